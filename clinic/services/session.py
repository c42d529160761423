"""
SessionContext: who is signed in and which role they hold.

After authentication the role is read from ``profiles/{identity id}``. A
missing profile leaves the session "unregistered" (the user is sent to
registration), a failed read signs the user back out. While the session is
active it keeps exactly one live subscription on the user's own profile;
``sign_out`` and leaving the ``async with`` block always release it.
"""

import logging
from typing import Optional

from pydantic import ValidationError as SchemaError

from clinic.exceptions import AuthError, ClinicError, ValidationError
from clinic.paths import hospital_path, profile_path
from clinic.router import landing_screen
from clinic.schemas.directory import Identity, Record, SessionToken
from clinic.schemas.profile import (
    DOCTOR,
    HOSPITAL_ADMIN,
    ROLES,
    SPECIALIZATIONS,
    ProfileBase,
    parse_profile,
    profile_type,
)
from clinic.services.directory import SERVER_TIMESTAMP, RemoteDirectory, Subscription
from clinic.services.notices import NoticeBoard

logger = logging.getLogger(__name__)

SIGNED_OUT = "signed_out"
UNREGISTERED = "unregistered"
ACTIVE = "active"


class SessionContext:
    def __init__(self, directory: RemoteDirectory, notices: Optional[NoticeBoard] = None):
        self.directory = directory
        self.notices = notices or NoticeBoard()
        self.state = SIGNED_OUT
        self.token: Optional[SessionToken] = None
        self.identity: Optional[Identity] = None
        self.profile: Optional[ProfileBase] = None
        self._subscription: Optional[Subscription] = None

    async def __aenter__(self) -> "SessionContext":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.sign_out()

    @property
    def role(self) -> Optional[str]:
        return self.profile.role if self.profile else None

    @property
    def landing_screen(self) -> str:
        return landing_screen(self.state, self.role)

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None and self._subscription.active

    async def sign_in(self, identifier: str, secret: str) -> str:
        await self.sign_out()
        try:
            token = await self.directory.authenticate(identifier, secret)
        except AuthError as e:
            self.notices.report("Login Failed", e)
            return self.state
        except ClinicError as e:
            logger.error("Sign-in for %s failed: %s", identifier, e)
            self.notices.report("Login Failed", e)
            return self.state

        self.token = token
        self.identity = token.identity

        try:
            record = await self.directory.read_once(profile_path(token.identity.id))
        except ClinicError as e:
            logger.warning("Profile lookup for %s failed, signing out: %s", token.identity.id, e)
            await self.sign_out()
            return self.state

        profile = self._parse(record) if record is not None else None
        if profile is None:
            self.state = UNREGISTERED
            self.notices.post("Error", "No user role found. Please register again.", level="error")
            return self.state

        self.profile = profile
        self.state = ACTIVE
        self._subscription = await self.directory.subscribe(
            profile_path(token.identity.id), self._on_profile, self._on_profile_error
        )
        logger.info("Signed in %s as %s", token.identity.id, profile.role)
        return self.state

    async def register(
        self,
        identifier: str,
        secret: str,
        role: str,
        full_name: str = "",
        mobile: str = "",
        specialization: str = "",
        hospital_name: str = "",
        state: str = "",
        city: str = "",
    ) -> str:
        """Create the account and its profile, then sign in."""
        try:
            self._validate_registration(identifier, secret, role, full_name, mobile, specialization,
                                        hospital_name, state, city)
        except ValidationError as e:
            self.notices.report("Error", e)
            return self.state

        try:
            identity = await self.directory.register(identifier, secret)
        except ClinicError as e:
            self.notices.report("Registration Failed", e)
            return self.state

        email = identity.identifier if identity.auth_method == "email" else None
        mobile = mobile.strip() or (identity.identifier if identity.auth_method == "mobile" else None)
        profile = profile_type(role)(
            id=identity.id,
            email=email,
            mobile=mobile,
            full_name=full_name.strip(),
            specialization=specialization,
            hospital_name=hospital_name.strip(),
            state=state.strip(),
            city=city.strip(),
        )
        fields = {k: v for k, v in profile.to_record().items() if v != ""}

        try:
            await self.directory.write(profile_path(identity.id), {**fields, "createdAt": SERVER_TIMESTAMP})
            if role == HOSPITAL_ADMIN:
                hospital = {k: v for k, v in fields.items() if k != "role"}
                await self.directory.write(
                    hospital_path(identity.id),
                    {**hospital, "adminId": identity.id, "createdAt": SERVER_TIMESTAMP},
                )
        except ClinicError as e:
            self.notices.report("Registration Failed", e)
            return self.state

        self.notices.success("Success", "Account created successfully!")
        return await self.sign_in(identifier, secret)

    def _validate_registration(self, identifier, secret, role, full_name, mobile, specialization,
                               hospital_name, state, city) -> None:
        if not identifier.strip() or not secret:
            raise ValidationError("identifier", "Email and password are required.")
        if role not in ROLES:
            raise ValidationError("role", f"Unknown role '{role}'.")
        if role == DOCTOR:
            if not full_name.strip() or not specialization:
                raise ValidationError("specialization", "Please fill all doctor details.")
            if specialization not in SPECIALIZATIONS:
                raise ValidationError("specialization", f"Unknown specialization '{specialization}'.")
        if role == HOSPITAL_ADMIN:
            if not all(v.strip() for v in (hospital_name, state, city, mobile)):
                raise ValidationError("hospitalName", "Please fill all hospital details including mobile.")

    async def sign_out(self) -> None:
        try:
            if self._subscription is not None:
                self._subscription()
        finally:
            self._subscription = None
            self.token = None
            self.identity = None
            self.profile = None
            self.state = SIGNED_OUT

    def _parse(self, record: Record) -> Optional[ProfileBase]:
        try:
            return parse_profile(record.id, record.data)
        except SchemaError as e:
            logger.warning("Profile %s has no usable role: %s", record.id, e)
            return None

    def _on_profile(self, record: Optional[Record]) -> None:
        if record is None:
            logger.warning("Own profile disappeared for %s", self.identity.id if self.identity else "?")
            return
        profile = self._parse(record)
        if profile is None:
            return
        if self.profile is not None and profile.role != self.profile.role:
            logger.warning("Ignoring role change %s -> %s on %s", self.profile.role, profile.role, record.id)
            return
        self.profile = profile

    def _on_profile_error(self, error) -> None:
        logger.warning("Profile subscription failed: %s", error)
