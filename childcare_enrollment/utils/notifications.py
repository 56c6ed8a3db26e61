# utils/notifications.py
"""
Notification dispatcher with proper Flask context management.
Domain events are queued by priority and handed to the registered handlers by a
background worker so that request handlers never wait on delivery.
"""

import itertools
import logging
import queue
import threading
import time
import uuid
from collections import OrderedDict
from datetime import datetime, timedelta


# Priority constants
class Priority:
    HIGH = 0
    NORMAL = 1
    LOW = 2


class DeliveryStatus:
    QUEUED = 'queued'
    SENDING = 'sending'
    SENT = 'sent'
    FAILED = 'failed'
    CANCELLED = 'cancelled'

    FINISHED = (SENT, FAILED, CANCELLED)

    def __init__(self, event_type, task_id, group_id=None, batch_id=None, max_attempts=3):
        self.event_type = event_type
        self.task_id = task_id
        self.group_id = group_id
        self.batch_id = batch_id
        self.status = self.QUEUED
        self.attempts = 0
        self.max_attempts = max_attempts
        self.last_attempt = None
        self.error = None
        self.timestamp = datetime.now()
        self.sent_time = None
        self.priority = Priority.NORMAL

    def to_dict(self):
        """Convert status to dictionary for JSON serialization"""
        return {
            'task_id': self.task_id,
            'event_type': self.event_type,
            'group_id': self.group_id,
            'batch_id': self.batch_id,
            'status': self.status,
            'attempts': self.attempts,
            'max_attempts': self.max_attempts,
            'timestamp': self.timestamp.isoformat(),
            'last_attempt': self.last_attempt.isoformat() if self.last_attempt else None,
            'sent_time': self.sent_time.isoformat() if self.sent_time else None,
            'error': self.error,
            'priority': self.priority
        }


class PriorityTaskQueue:
    def __init__(self):
        self.queue = queue.PriorityQueue()
        self.task_map = {}
        self.counter = itertools.count()

    def put(self, task, priority=Priority.NORMAL):
        """Add a task to the queue with a priority level"""
        task['priority'] = priority
        entry = (priority, next(self.counter), task)
        self.queue.put(entry)

        task_id = task.get('task_id')
        if task_id:
            self.task_map[task_id] = task

        return task_id

    def get(self, timeout=None):
        """Get the next task from the queue based on priority"""
        try:
            _, _, task = self.queue.get(timeout=timeout) if timeout else self.queue.get(block=False)
        except queue.Empty:
            return None

        self.task_map.pop(task.get('task_id'), None)
        return task

    def cancel(self, task_id):
        """Cancel a task if it's still in the queue"""
        if task_id in self.task_map:
            task = self.task_map.pop(task_id)
            task['cancelled'] = True
            return True
        return False

    def size(self):
        """Get queue size"""
        return self.queue.qsize()


def log_event_handler(payload):
    """Default handler: record the event for operators."""
    logging.getLogger('notification_dispatcher').info(
        f"Notification event {payload.get('eventType')}: student={payload.get('studentId')} "
        f"class={payload.get('classId')} session={payload.get('sessionId')}"
    )


class NotificationDispatcher:
    def __init__(self, app=None):
        self.app = None
        self.handlers = []
        self.statuses = OrderedDict()
        self.task_queue = PriorityTaskQueue()
        self.worker_thread = None
        self.running = False
        self.synchronous = False
        self.max_attempts = 3
        self.base_delay = 2
        self.max_delay = 60
        self.status_retention = timedelta(hours=1)
        self.max_statuses = 10000
        self.logger = logging.getLogger('notification_dispatcher')
        self._shutdown_event = threading.Event()
        self._lock = threading.Lock()

        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        """Bind to the Flask app and start the worker unless delivery is synchronous."""
        self.app = app
        self.synchronous = app.config.get('NOTIFICATIONS_SYNCHRONOUS', False)
        self.max_attempts = app.config.get('NOTIFICATION_MAX_ATTEMPTS', 3)
        self.base_delay = app.config.get('NOTIFICATION_RETRY_BASE_DELAY', 2)
        self.max_delay = app.config.get('NOTIFICATION_RETRY_MAX_DELAY', 60)
        self.status_retention = timedelta(minutes=app.config.get('NOTIFICATION_STATUS_RETENTION_MINUTES', 60))
        self.max_statuses = app.config.get('NOTIFICATION_STATUS_MAX', 10000)

        if not self.handlers:
            self.register_handler(log_event_handler)

        if not self.synchronous and not self.running:
            self.start_worker()

            import atexit
            atexit.register(self.stop_worker)

        self.logger.info(
            f"Notification dispatcher initialized (synchronous={self.synchronous}, "
            f"max_attempts={self.max_attempts})"
        )

    def register_handler(self, handler):
        """Register a callable receiving the event payload dict."""
        if handler not in self.handlers:
            self.handlers.append(handler)
        return handler

    def unregister_handler(self, handler):
        if handler in self.handlers:
            self.handlers.remove(handler)

    def publish(self, event, priority=Priority.NORMAL, batch_id=None):
        """
        Queue a domain event for delivery.

        Never raises: a failure to queue is logged and swallowed so that the
        operation which produced the event is not affected.

        Args:
            event: DomainEvent instance
            priority: Priority level
            batch_id: Optional id grouping events produced by one operation

        Returns:
            str: Task id, or None when the event could not be queued
        """
        try:
            task_id = f"{event.event_type}_{uuid.uuid4().hex[:12]}"

            status = DeliveryStatus(
                event_type=event.event_type,
                task_id=task_id,
                group_id=event.event_type,
                batch_id=batch_id,
                max_attempts=self.max_attempts
            )
            status.priority = priority

            with self._lock:
                self.statuses[task_id] = status
                self._prune_statuses()

            task = {
                'task_id': task_id,
                'event_type': event.event_type,
                'payload': event.to_payload(),
                'group_id': event.event_type,
                'batch_id': batch_id
            }

            if self.synchronous:
                self._deliver_with_retries(task)
            else:
                self.task_queue.put(task, priority)

            self.logger.debug(f"Notification {task_id} queued")
            return task_id

        except Exception as e:
            self.logger.error(f"Failed to queue notification event: {str(e)}", exc_info=True)
            return None

    def _prune_statuses(self, now=None):
        """
        Forget finished deliveries older than the retention window, then the
        oldest finished ones beyond the size cap. Caller holds the lock.

        Returns:
            int: Number of statuses removed
        """
        cutoff = (now or datetime.now()) - self.status_retention
        removed = 0

        # Insertion order is creation order, so stop at the first status inside the window
        for task_id, status in list(self.statuses.items()):
            if status.timestamp >= cutoff:
                break
            if status.status in DeliveryStatus.FINISHED:
                del self.statuses[task_id]
                removed += 1

        if len(self.statuses) > self.max_statuses:
            for task_id, status in list(self.statuses.items()):
                if len(self.statuses) <= self.max_statuses:
                    break
                if status.status in DeliveryStatus.FINISHED:
                    del self.statuses[task_id]
                    removed += 1

        if removed:
            self.logger.debug(f"Pruned {removed} finished notification statuses")
        return removed

    def prune_statuses(self, now=None):
        with self._lock:
            return self._prune_statuses(now)

    def start_worker(self):
        """Start the notification worker thread"""
        if self.worker_thread is None or not self.worker_thread.is_alive():
            self.running = True
            self._shutdown_event.clear()
            self.worker_thread = threading.Thread(
                target=self._process_queue,
                daemon=True,
                name="NotificationWorker"
            )
            self.worker_thread.start()
            self.logger.info("Notification worker thread started")

    def stop_worker(self):
        """Stop the notification worker thread"""
        self.running = False
        self._shutdown_event.set()

        if self.worker_thread and self.worker_thread.is_alive():
            self.worker_thread.join(timeout=5)
            if self.worker_thread.is_alive():
                self.logger.warning("Notification worker thread did not shut down gracefully")
            else:
                self.logger.info("Notification worker thread stopped")

    def _retry_delay(self, attempts):
        return min(self.base_delay * (2 ** (attempts - 1)), self.max_delay)

    def _deliver(self, task):
        """Hand the payload to every registered handler inside an app context."""
        with self.app.app_context():
            for handler in list(self.handlers):
                handler(dict(task['payload']))

    def _attempt(self, task):
        """Run one delivery attempt and record its outcome. Returns True on success."""
        status = self.statuses.get(task['task_id'])
        if status:
            status.status = DeliveryStatus.SENDING
            status.attempts += 1
            status.last_attempt = datetime.now()

        try:
            self._deliver(task)
        except Exception as e:
            self.logger.error(f"Notification delivery failed for {task['task_id']}: {str(e)}", exc_info=True)
            if status:
                status.status = DeliveryStatus.FAILED
                status.error = str(e)
            return False

        if status:
            status.status = DeliveryStatus.SENT
            status.sent_time = datetime.now()
            status.error = None
        return True

    def _deliver_with_retries(self, task):
        for attempt in range(1, self.max_attempts + 1):
            if self._attempt(task):
                return True
            if attempt < self.max_attempts:
                time.sleep(self._retry_delay(attempt))

        self.logger.warning(f"Giving up on notification {task['task_id']} after {self.max_attempts} attempts")
        return False

    def _process_queue(self):
        """Process notification tasks from the queue"""
        while self.running and not self._shutdown_event.is_set():
            try:
                task = self.task_queue.get(timeout=1.0)
                if not task:
                    continue

                task_id = task.get('task_id')
                if task.get('cancelled', False):
                    self.logger.info(f"Task {task_id} was cancelled. Skipping.")
                    continue

                if self._attempt(task):
                    continue

                status = self.statuses.get(task_id)
                if status and status.attempts < status.max_attempts:
                    delay = self._retry_delay(status.attempts)
                    self.logger.info(f"Retrying task {task_id} in {delay} seconds")
                    self._shutdown_event.wait(delay)
                    self.task_queue.put(task, priority=task.get('priority', Priority.NORMAL))
                else:
                    self.logger.warning(f"Giving up on notification {task_id}")

            except Exception as e:
                self.logger.error(f"Notification worker error: {str(e)}", exc_info=True)
                time.sleep(1)

        self.logger.info("Notification worker thread exited")

    def cancel(self, task_id):
        """Cancel a queued notification"""
        if self.task_queue.cancel(task_id):
            status = self.statuses.get(task_id)
            if status:
                status.status = DeliveryStatus.CANCELLED
            return True
        return False

    def get_queue_stats(self):
        """Get statistics about the notification queue"""
        stats = {
            'queued': 0,
            'sending': 0,
            'sent': 0,
            'failed': 0,
            'cancelled': 0,
            'total': len(self.statuses)
        }

        for status in list(self.statuses.values()):
            if status.status in stats:
                stats[status.status] += 1

        stats['queue_size'] = self.task_queue.size()
        stats['worker_alive'] = bool(self.worker_thread and self.worker_thread.is_alive())
        stats['synchronous'] = self.synchronous

        return stats

    def get_status(self, task_id):
        """Get status of a notification task"""
        status = self.statuses.get(task_id)
        return status.to_dict() if status else None
