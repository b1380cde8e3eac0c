# votee9ja/authentication/accounts.py

import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, OperationalError

from votee9ja.audit.audit_logger import AuditLogger
from votee9ja.authentication.rbac import AccessPolicyEngine, Entity, Identity, Operation, UserRole
from votee9ja.database.models import GENDERS, ROLES, Account, Voter
from votee9ja.encryption.password_hashing import PasswordHashingService
from votee9ja.errors import (
    NotFoundError,
    TransientError,
    UnauthenticatedError,
    ValidationError,
    VoteE9jaError,
)
from votee9ja.operations.clock import utcnow
from votee9ja.security.validators import InputValidator, parse_date

logger = logging.getLogger(__name__)

# Only the authority (super admin) may set these.
PRIVILEGED_PROFILE_FIELDS = ('role', 'is_verified', 'verification_method')
VERIFICATION_METHODS = ('email', 'phone', 'nin', 'manual')
SELF_EDITABLE_FIELDS = ('phone_number', 'address', 'occupation', 'surname')

INVALID_CREDENTIALS = 'Invalid email or password'


class AccountService:
    """Registration, sign-in and profile maintenance.

    Accounts (credentials) and voter profiles are always created together;
    a failure at any step leaves neither behind.
    """

    def __init__(self, session, policy=None, validator=None, hasher=None, clock=utcnow):
        self.session = session
        self.policy = policy or AccessPolicyEngine()
        self.validator = validator or InputValidator()
        self.hasher = hasher or PasswordHashingService(self.validator)
        self.clock = clock
        self.audit = AuditLogger(session)

    # --------------------------- registration -------------------------- #

    def register(self, data, client_metadata=None):
        data = data or {}
        forbidden = [field for field in PRIVILEGED_PROFILE_FIELDS if field in data]
        if forbidden:
            logger.warning("Registration refused: payload tried to set %s", ', '.join(forbidden))
            raise ValidationError(errors={field: 'This field cannot be set at registration' for field in forbidden})

        cleaned = self._validate_registration(data)
        return self._create_account(cleaned, role=UserRole.VOTER, actor=None, client_metadata=client_metadata)

    def create_privileged(self, data, role, is_verified=True, actor=None):
        """Create an account with an elevated role.

        With no ``actor`` this is the operator bootstrap path (``flask
        create-user``) and no policy check applies.
        """
        role = role if isinstance(role, UserRole) else UserRole(role)
        cleaned = self._validate_registration(data)
        cleaned['is_verified'] = is_verified
        cleaned['verification_method'] = 'manual' if is_verified else None
        return self._create_account(cleaned, role=role, actor=actor, check_policy=actor is not None)

    def _create_account(self, cleaned, role, actor, client_metadata=None, check_policy=True):
        client_metadata = client_metadata or {}
        password = cleaned.pop('password')
        email = cleaned.pop('email')
        try:
            account = Account(email=email, password_hash=self.hasher.hash_password(password))
            self.session.add(account)
            self.session.flush()

            profile = Voter(
                id=account.id,
                role=role.value,
                is_verified=cleaned.pop('is_verified', False),
                login_count=0,
                **cleaned,
            )
            profile.account = account
            if check_policy:
                # Self-registration is checked as the new account itself.
                identity = actor or Identity(id=account.id, role=UserRole.VOTER)
                self.policy.authorize(identity, Entity.VOTER_PROFILE, Operation.INSERT, profile)
            self.session.add(profile)
            self.session.flush()

            self.audit.log(
                actor_id=actor.id if actor else profile.id,
                action='user_registered',
                affected_table='voters',
                affected_id=profile.id,
                after={'role': profile.role, 'is_verified': profile.is_verified},
                ip_address=client_metadata.get('ip_address'),
                user_agent=client_metadata.get('user_agent'),
            )
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            logger.warning("Registration conflict: %s", exc.orig)
            raise ValidationError(errors={'email': 'An account with these details already exists'})
        except OperationalError:
            self.session.rollback()
            logger.exception("Storage unavailable during registration")
            raise TransientError()
        except VoteE9jaError:
            self.session.rollback()
            raise

        logger.info("Registered %s account %s", role.value, profile.id)
        return profile

    def _validate_registration(self, data):
        errors = {}
        cleaned = {}

        def check(key, result):
            if result:
                cleaned[key] = result.cleaned_value
            else:
                errors[key] = result.message

        email_result = self.validator.validate_email(data.get('email'))
        if email_result:
            cleaned['email'] = email_result.cleaned_value
        elif email_result.suggestion:
            errors['email'] = f"{email_result.message} (did you mean {email_result.suggestion}?)"
        else:
            errors['email'] = email_result.message

        password_result = self.validator.validate_password(data.get('password'))
        if password_result:
            cleaned['password'] = data['password']
        else:
            errors['password'] = password_result.message
        if 'confirm_password' in data:
            confirmation = self.validator.validate_password_confirmation(
                data.get('password'), data.get('confirm_password')
            )
            if not confirmation:
                errors['confirm_password'] = confirmation.message

        check('first_name', self.validator.validate_required_text(data.get('first_name'), 'First name'))
        check('last_name', self.validator.validate_required_text(data.get('last_name'), 'Last name'))
        if data.get('surname'):
            check('surname', self.validator.validate_required_text(data.get('surname'), 'Surname'))
        check('phone_number', self.validator.validate_phone_number(data.get('phone_number')))

        nin_result = self.validator.validate_nin(data.get('nin'))
        if not nin_result:
            errors['nin'] = nin_result.message
        elif nin_result.cleaned_value:
            cleaned['nin'] = nin_result.cleaned_value

        dob_result = self.validator.validate_date_of_birth(data.get('date_of_birth'), today=self.clock().date())
        if dob_result:
            cleaned['date_of_birth'] = dob_result.cleaned_value
        else:
            errors['date_of_birth'] = dob_result.message

        gender = data.get('gender')
        if gender not in GENDERS:
            errors['gender'] = 'Gender must be one of: ' + ', '.join(GENDERS)
        else:
            cleaned['gender'] = gender

        address = data.get('address')
        if not isinstance(address, str) or len(address.strip()) < 10:
            errors['address'] = 'Please enter your full address'
        else:
            cleaned['address'] = self.validator.sanitize_string(address, max_length=500)
        if data.get('occupation'):
            if not isinstance(data['occupation'], str):
                errors['occupation'] = 'Must be text'
            else:
                cleaned['occupation'] = self.validator.sanitize_string(data['occupation'], max_length=100)

        if errors:
            raise ValidationError(errors=errors)

        cleaned['date_of_birth'] = parse_date(cleaned['date_of_birth'])
        return cleaned

    # ------------------------------ sign-in ---------------------------- #

    def authenticate(self, email, password, client_metadata=None):
        client_metadata = client_metadata or {}
        if not isinstance(email, str) or not isinstance(password, str):
            raise UnauthenticatedError(INVALID_CREDENTIALS)

        account = (
            self.session.query(Account)
            .filter(func.lower(Account.email) == email.strip().lower())
            .one_or_none()
        )
        if account is None or not self.hasher.verify_password(password, account.password_hash):
            logger.warning("Failed sign-in for %s from %s", email.strip().lower(), client_metadata.get('ip_address'))
            raise UnauthenticatedError(INVALID_CREDENTIALS)

        profile = account.profile
        if profile is None:
            logger.warning("Account %s has no voter profile", account.id)
            raise UnauthenticatedError(INVALID_CREDENTIALS)

        try:
            if self.hasher.needs_rehash(account.password_hash):
                account.password_hash = self.hasher.ph.hash(password)
            now = self.clock()
            account.last_sign_in_at = now
            profile.last_login = now
            profile.login_count = (profile.login_count or 0) + 1
            self.audit.log(
                actor_id=profile.id,
                action='user_login',
                affected_table='voters',
                affected_id=profile.id,
                ip_address=client_metadata.get('ip_address'),
                user_agent=client_metadata.get('user_agent'),
            )
            self.session.commit()
        except OperationalError:
            self.session.rollback()
            logger.exception("Storage unavailable during sign-in")
            raise TransientError()

        logger.info("Sign-in for %s", profile.id)
        return profile

    # ------------------------------ profiles --------------------------- #

    def get_profile(self, identity):
        if identity is None:
            raise UnauthenticatedError()
        profile = self.session.get(Voter, identity.id)
        if profile is None:
            raise NotFoundError()
        return profile

    def list_users(self, identity):
        profiles = self.session.query(Voter).order_by(Voter.created_at.desc()).all()
        return self.policy.filter_readable(identity, Entity.VOTER_PROFILE, profiles)

    def update_profile(self, identity, changes, client_metadata=None):
        """Limited self-service update; role and verification cannot change here."""
        profile = self.get_profile(identity)
        changes = changes or {}
        unknown = set(changes) - set(SELF_EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(errors={field: 'This field cannot be changed' for field in sorted(unknown)})

        fields = self._clean_profile_changes(changes)
        self.policy.authorize(identity, Entity.VOTER_PROFILE, Operation.UPDATE, profile, fields)
        return self._apply(identity, profile, fields, 'profile_updated', client_metadata)

    def update_user(self, identity, voter_id, changes, client_metadata=None):
        """Authority update of another profile: role, verification, contact fields."""
        if identity is None:
            raise UnauthenticatedError()
        profile = self.session.get(Voter, voter_id)
        if profile is None or not self.policy.is_allowed(identity, Entity.VOTER_PROFILE, Operation.READ, profile):
            raise NotFoundError()
        changes = changes or {}
        unknown = set(changes) - set(SELF_EDITABLE_FIELDS) - set(PRIVILEGED_PROFILE_FIELDS)
        if unknown:
            raise ValidationError(errors={field: 'This field cannot be changed' for field in sorted(unknown)})

        fields = self._clean_profile_changes(changes)
        errors = {}
        if 'role' in changes:
            if changes['role'] not in ROLES:
                errors['role'] = 'Role must be one of: ' + ', '.join(ROLES)
            else:
                fields['role'] = changes['role']
        if 'is_verified' in changes:
            if not isinstance(changes['is_verified'], bool):
                errors['is_verified'] = 'Must be true or false'
            else:
                fields['is_verified'] = changes['is_verified']
        if 'verification_method' in changes:
            method = changes['verification_method']
            if method is not None and method not in VERIFICATION_METHODS:
                errors['verification_method'] = 'Method must be one of: ' + ', '.join(VERIFICATION_METHODS)
            else:
                fields['verification_method'] = method
        if errors:
            raise ValidationError(errors=errors)

        self.policy.authorize(identity, Entity.VOTER_PROFILE, Operation.UPDATE, profile, fields)
        if 'role' in fields and fields['role'] != profile.role:
            logger.warning("Role of %s changed from %s to %s by %s", profile.id, profile.role, fields['role'], identity.id)
        return self._apply(identity, profile, fields, 'user_updated', client_metadata)

    def _clean_profile_changes(self, changes):
        errors = {}
        fields = {}
        if 'phone_number' in changes:
            result = self.validator.validate_phone_number(changes['phone_number'])
            if result:
                fields['phone_number'] = result.cleaned_value
            else:
                errors['phone_number'] = result.message
        if 'surname' in changes:
            if changes['surname'] in (None, ''):
                fields['surname'] = None
            else:
                result = self.validator.validate_required_text(changes['surname'], 'Surname')
                if result:
                    fields['surname'] = result.cleaned_value
                else:
                    errors['surname'] = result.message
        if 'address' in changes:
            address = changes['address']
            if not isinstance(address, str) or len(address.strip()) < 10:
                errors['address'] = 'Please enter your full address'
            else:
                fields['address'] = self.validator.sanitize_string(address, max_length=500)
        if 'occupation' in changes:
            occupation = changes['occupation']
            if occupation is not None and not isinstance(occupation, str):
                errors['occupation'] = 'Must be text'
            else:
                fields['occupation'] = self.validator.sanitize_string(occupation, max_length=100) if occupation else None
        if errors:
            raise ValidationError(errors=errors)
        return fields

    def _apply(self, identity, profile, fields, action, client_metadata):
        client_metadata = client_metadata or {}
        try:
            before = {key: getattr(profile, key) for key in fields}
            for key, value in fields.items():
                setattr(profile, key, value)
            self.session.flush()
            self.audit.log(
                actor_id=identity.id,
                action=action,
                affected_table='voters',
                affected_id=profile.id,
                before=before,
                after=dict(fields),
                ip_address=client_metadata.get('ip_address'),
                user_agent=client_metadata.get('user_agent'),
            )
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            logger.warning("Profile update conflict: %s", exc.orig)
            raise ValidationError(errors={'phone_number': 'This phone number is already registered'})
        except OperationalError:
            self.session.rollback()
            logger.exception("Storage unavailable during profile update")
            raise TransientError()
        except VoteE9jaError:
            self.session.rollback()
            raise
        return profile
