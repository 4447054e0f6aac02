from __future__ import annotations

import logging
from typing import Callable, Sequence

from slotbot.cowin_client import CowinClient
from slotbot.domain import AuthenticationError, ProviderBusyError, ProviderQueryError, Session

logger = logging.getLogger(__name__)


class OtpAuthenticator:
    """Mobile OTP login. Blocks on `prompt` until the operator types the code."""

    def __init__(self, client: CowinClient, *, prompt: Callable[[str], str] = input, max_prompts: int = 3) -> None:
        self._client = client
        self._prompt = prompt
        self._max_prompts = max_prompts

    def authenticate(self, phone_number: str, subject_ids: Sequence[str]) -> Session:
        try:
            token = self._log_in(phone_number)
            registered = {str(b.get("beneficiary_reference_id", "")) for b in self._client.beneficiaries(token)}
        except (ProviderBusyError, ProviderQueryError) as e:
            raise AuthenticationError(f"Could not establish a session for {phone_number}: {e}") from e

        missing = [s for s in subject_ids if s not in registered]
        if missing:
            raise AuthenticationError(
                f"Beneficiary ids {', '.join(missing)} are not registered for mobile {phone_number}"
            )

        logger.info("Authenticated %s with %d beneficiaries", phone_number, len(subject_ids))
        return Session(token=token, phone_number=phone_number)

    def _log_in(self, phone_number: str) -> str:
        txn_id = self._client.generate_otp(phone_number)
        logger.info("OTP sent to %s", phone_number)

        for attempt in range(1, self._max_prompts + 1):
            try:
                otp = self._prompt(f"Enter the OTP sent to {phone_number}: ").strip()
            except EOFError as e:
                raise AuthenticationError("No terminal to read the OTP from") from e
            if not otp.isdigit():
                logger.warning("OTP must be numeric (prompt %d of %d)", attempt, self._max_prompts)
                continue
            try:
                return self._client.confirm_otp(txn_id, otp)
            except ProviderQueryError as e:
                logger.warning("OTP rejected (prompt %d of %d): %s", attempt, self._max_prompts, e)

        raise AuthenticationError(f"No valid OTP entered after {self._max_prompts} prompts")
