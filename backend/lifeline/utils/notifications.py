from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

import firebase_admin
from firebase_admin import credentials, messaging
from loguru import logger

from ..database import BASE_DIR, settings


@dataclass
class PushMessage:
    title: str
    body: str
    data: Dict[str, str] = field(default_factory=dict)


@dataclass
class BatchResult:
    success_count: int
    failure_count: int
    failed_tokens: List[str] = field(default_factory=list)


@dataclass
class DispatchResult:
    delivered: int = 0
    skipped: int = 0
    failed: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


class PushProvider(Protocol):
    @property
    def configured(self) -> bool: ...

    async def send_multicast(self, message: PushMessage, tokens: Sequence[str]) -> BatchResult: ...

    async def send(self, message: PushMessage, token: str) -> bool: ...


class FirebasePushProvider:
    """Firebase Cloud Messaging; unconfigured when no credentials are available."""

    APP_NAME = "lifeline"

    def __init__(self) -> None:
        self.app: Optional[firebase_admin.App] = None
        try:
            cred = self._load_credentials()
        except (OSError, ValueError) as exc:
            logger.warning("Firebase initialization error: {}. Push notifications disabled.", exc)
            return
        if cred is None:
            logger.warning("Firebase credentials not configured; push notifications disabled.")
            return
        try:
            self.app = firebase_admin.get_app(self.APP_NAME)
        except ValueError:
            self.app = firebase_admin.initialize_app(cred, name=self.APP_NAME)
        logger.info("Firebase Admin initialized")

    @staticmethod
    def _load_credentials() -> Optional[credentials.Certificate]:
        if settings.firebase_service_account_path:
            path = Path(settings.firebase_service_account_path)
            if not path.is_absolute():
                path = BASE_DIR / path
            if not path.exists():
                logger.warning("Firebase service account file not found at {}", path)
                return None
            return credentials.Certificate(str(path))
        if settings.firebase_project_id and settings.firebase_private_key and settings.firebase_client_email:
            return credentials.Certificate(
                {
                    "type": "service_account",
                    "project_id": settings.firebase_project_id,
                    "private_key": settings.firebase_private_key.replace("\\n", "\n"),
                    "client_email": settings.firebase_client_email,
                    "token_uri": "https://oauth2.googleapis.com/token",
                }
            )
        return None

    @property
    def configured(self) -> bool:
        return self.app is not None

    async def send_multicast(self, message: PushMessage, tokens: Sequence[str]) -> BatchResult:
        multicast = messaging.MulticastMessage(
            notification=messaging.Notification(title=message.title, body=message.body),
            data=message.data,
            tokens=list(tokens),
        )
        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(
            None, lambda: messaging.send_each_for_multicast(multicast, app=self.app)
        )
        failed = [token for token, result in zip(tokens, response.responses) if not result.success]
        return BatchResult(
            success_count=response.success_count,
            failure_count=response.failure_count,
            failed_tokens=failed,
        )

    async def send(self, message: PushMessage, token: str) -> bool:
        single = messaging.Message(
            notification=messaging.Notification(title=message.title, body=message.body),
            data=message.data,
            token=token,
        )
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, lambda: messaging.send(single, app=self.app))
        return True


def _location(request: Mapping[str, Any]) -> Mapping[str, Any]:
    return request.get("location") or {}


def emergency_message(request: Mapping[str, Any]) -> PushMessage:
    blood_type = request.get("blood_type", "")
    city = _location(request).get("city", "")
    urgency = request.get("urgency", "")
    return PushMessage(
        title=f"Emergency: {blood_type} Blood Needed!",
        body=(
            f"{request.get('patient_name')} needs {blood_type} blood at "
            f"{request.get('hospital_name')}, {city}. Urgency: {urgency}"
        ),
        data={
            "requestId": str(request.get("_id")),
            "bloodType": str(blood_type),
            "city": str(city),
            "urgency": str(urgency),
            "type": "emergency_request",
        },
    )


class NotificationFanout:
    def __init__(self, provider: Optional[PushProvider], timeout: float | None = None) -> None:
        self.provider = provider
        self.timeout = timeout if timeout is not None else settings.push_timeout_seconds

    @property
    def configured(self) -> bool:
        return self.provider is not None and self.provider.configured

    async def dispatch(self, donors: Sequence[Mapping[str, Any]], request: Mapping[str, Any]) -> DispatchResult:
        """Send one multicast push for ``request`` to every donor holding a device token.

        Donors without a token are skipped. An unconfigured or unreachable
        provider skips everyone; a provider call that outlives ``timeout``
        counts its tokens as failed. Never raises.
        """
        total = len(donors)
        if not total:
            return DispatchResult()
        if not self.configured:
            logger.info("Push provider not configured; skipping {} notification(s)", total)
            return DispatchResult(skipped=total)

        tokens = [donor["push_token"] for donor in donors if donor.get("push_token")]
        skipped = total - len(tokens)
        if not tokens:
            logger.info("No donors with push tokens among {} candidate(s)", total)
            return DispatchResult(skipped=skipped)

        try:
            result = await asyncio.wait_for(
                self.provider.send_multicast(emergency_message(request), tokens), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.error("Push provider timed out after {}s for {} token(s)", self.timeout, len(tokens))
            return DispatchResult(skipped=skipped, failed=len(tokens))
        except Exception as exc:
            logger.error("Push provider unavailable: {}", exc)
            return DispatchResult(skipped=total)

        if result.failure_count:
            logger.warning("{} push notification(s) failed", result.failure_count)
        logger.info("Sent {} push notification(s)", result.success_count)
        return DispatchResult(delivered=result.success_count, skipped=skipped, failed=result.failure_count)

    async def _send_one(self, token: Optional[str], message: PushMessage) -> bool:
        if not token or not self.configured:
            return False
        try:
            return await asyncio.wait_for(self.provider.send(message, token), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error("Push provider timed out sending '{}'", message.title)
        except Exception as exc:
            logger.error("Error sending '{}' notification: {}", message.title, exc)
        return False

    async def notify_verification(self, donor: Mapping[str, Any]) -> bool:
        message = PushMessage(
            title="Account Verified!",
            body="Your LifeLine donor account has been verified. You can now respond to blood requests.",
            data={"type": "account_verified"},
        )
        return await self._send_one(donor.get("push_token"), message)

    async def notify_requester(
        self, requester: Mapping[str, Any], donor: Mapping[str, Any], request: Mapping[str, Any]
    ) -> bool:
        message = PushMessage(
            title="Donor Response!",
            body=(
                f"{donor.get('name')} ({donor.get('blood_type')}) has responded to your blood request "
                f"for {_location(request).get('city', '')}."
            ),
            data={
                "requestId": str(request.get("_id")),
                "donorId": str(donor.get("_id")),
                "type": "donor_response",
            },
        )
        return await self._send_one(requester.get("push_token"), message)
