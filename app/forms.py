from flask_wtf import FlaskForm
from wtforms import StringField, PasswordField, BooleanField, SubmitField, TextAreaField, SelectField
from wtforms.validators import DataRequired, Email, Length, ValidationError, Optional


class LoginForm(FlaskForm):
    username = StringField('Username', validators=[DataRequired()])
    password = PasswordField('Password', validators=[DataRequired()])
    remember_me = BooleanField('Remember Me')
    submit = SubmitField('Log In')


class ProfileSettingsForm(FlaskForm):
    """Settings page form; mirrors the JSON accepted by PUT /profile."""
    name = StringField('Full Name', validators=[Optional(), Length(max=255)])
    short_name = StringField('Display Name', validators=[Optional(), Length(max=255)])
    sortable_name = StringField('Sortable Name', validators=[Optional(), Length(max=255)])
    time_zone = StringField('Time Zone', validators=[Optional()])
    pronouns = SelectField('Pronouns', choices=[], validate_choice=False)
    default_email_id = SelectField('Default Email', choices=[], validate_choice=False)
    submit = SubmitField('Update Settings')

    def validate_time_zone(self, time_zone):
        if not time_zone.data:
            return
        from .services import user_service
        if not user_service.valid_time_zone(time_zone.data):
            raise ValidationError('Please choose a valid time zone.')

    def to_params(self):
        user = {
            'name': self.name.data,
            'short_name': self.short_name.data,
            'sortable_name': self.sortable_name.data,
            'time_zone': self.time_zone.data or None,
        }
        # Only present when the account offers pronouns
        if self.pronouns.raw_data:
            user['pronouns'] = self.pronouns.data
        return {'default_email_id': self.default_email_id.data or None, 'user': user}


class UserProfileForm(FlaskForm):
    """Public profile form; mirrors the JSON accepted by PUT /profile/update_profile."""
    short_name = StringField('Display Name', validators=[Optional(), Length(max=255)])
    title = StringField('Title', validators=[Optional(), Length(max=255)])
    bio = TextAreaField('Bio', validators=[Optional()])
    submit = SubmitField('Save Profile')

    def to_params(self):
        return {
            'user': {'short_name': self.short_name.data},
            'user_profile': {'title': self.title.data, 'bio': self.bio.data},
        }


class CommunicationChannelForm(FlaskForm):
    address = StringField('Email Address', validators=[DataRequired(), Email()])
    submit = SubmitField('Register Email')
