# controllers/forms.py
"""
Flask-WTF forms validating the JSON bodies of the enrollment API.
CSRF is enforced for the whole app by CSRFProtect, so the forms skip their own token field.
"""

from flask_wtf import FlaskForm
from wtforms import StringField, BooleanField, TextAreaField
from wtforms.validators import DataRequired, Length, Optional, AnyOf

from childcare_enrollment.models.enrollment import PaymentMethod


class EnrollmentRequestForm(FlaskForm):
    """Body of POST /api/enrollments/<class_id>."""

    class Meta:
        csrf = False

    sessionId = StringField(
        'Session',
        validators=[
            DataRequired(message='Session ID is required'),
            Length(max=36, message='Invalid session ID')
        ]
    )

    paymentMethod = StringField(
        'Payment method',
        validators=[
            Optional(),
            AnyOf(PaymentMethod.ALL, message=f"Payment method must be one of: {', '.join(PaymentMethod.ALL)}")
        ]
    )

    joinWaitlistIfFull = BooleanField('Join waitlist if full', default=False)


class ReviewForm(FlaskForm):
    """Body of the admin approve/reject/reset/remove endpoints."""

    class Meta:
        csrf = False

    adminNotes = TextAreaField(
        'Admin notes',
        validators=[
            Optional(),
            Length(max=2000, message='Notes must be 2000 characters or fewer')
        ]
    )


def form_errors(form):
    """Flatten WTForms errors into a single message."""
    messages = []
    for field_errors in form.errors.values():
        messages.extend(field_errors)
    return '; '.join(messages)
