import logging
import os
from threading import Lock
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class PushSender:
    """Delivers notification pushes through Firebase Cloud Messaging when configured."""

    def __init__(self, credentials_path: Optional[str] = None):
        self._lock = Lock()
        self._credentials_path = credentials_path
        self._ready = False
        self._enabled = False
        self._messaging = None

    @property
    def enabled(self) -> bool:
        self._setup()
        return self._enabled

    def _setup(self) -> None:
        if self._ready:
            return
        with self._lock:
            if self._ready:
                return
            path = (self._credentials_path or os.getenv("FIREBASE_CREDENTIALS_PATH", "")).strip()
            self._ready = True
            if not path:
                logger.info("Push delivery off: FIREBASE_CREDENTIALS_PATH not set")
                return
            try:
                import firebase_admin
                from firebase_admin import credentials, messaging

                if not firebase_admin._apps:  # pylint: disable=protected-access
                    firebase_admin.initialize_app(credentials.Certificate(path))
            except Exception:
                logger.exception("Push delivery off: Firebase setup failed")
                return
            self._messaging = messaging
            self._enabled = True
            logger.info("Push delivery enabled")

    def send(self, tokens: List[str], title: str, body: str, data: Dict[str, str]) -> List[str]:
        """Push to every device token and return the tokens Firebase rejected."""
        self._setup()
        if not self._enabled or not tokens:
            return []
        assert self._messaging is not None
        try:
            batch = self._messaging.send_each_for_multicast(
                self._messaging.MulticastMessage(
                    notification=self._messaging.Notification(title=title, body=body),
                    tokens=tokens,
                    data=data,
                )
            )
        except Exception:
            logger.exception("Push delivery failed for %d device(s)", len(tokens))
            return []
        rejected: List[str] = []
        for token, response in zip(tokens, batch.responses):
            if response.success:
                continue
            reason = str(response.exception).lower() if response.exception else ""
            if "registration token" in reason or "invalid argument" in reason:
                rejected.append(token)
        return rejected


push_sender = PushSender()
