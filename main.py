import argparse
import dataclasses
import logging
import signal

from slotbot.auth import OtpAuthenticator
from slotbot.config import APP_VERSION, Settings, load_settings
from slotbot.cowin_client import CowinClient
from slotbot.domain import AuthCriteria, RunOutcome, RunState, SearchCriteria, Session, SlotBotError
from slotbot.finder import SlotFinder
from slotbot.notifications import Notifier
from slotbot.slot_query import CowinSlotQuery
from slotbot.version_gate import VersionGate

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _exit_on_sigterm(signum, frame) -> None:
    raise SystemExit(128 + signum)


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="SlotBot: CoWIN vaccination slot finder")
    parser.add_argument(
        "--env-file",
        default=None,
        help="Path to a .env file (default: the nearest .env from the current directory upwards)",
    )
    parser.add_argument("--max-attempts", type=int, default=None, help="Override TOTAL_ITERATIONS")
    parser.add_argument("--report-only", action="store_true", help="Report the first matching slot instead of booking it")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def _apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    changes = {}
    if args.max_attempts is not None:
        if args.max_attempts < 1:
            raise SystemExit("--max-attempts must be >= 1")
        changes["max_attempts"] = args.max_attempts
    if args.report_only:
        changes["auto_book"] = False
    return dataclasses.replace(settings, **changes) if changes else settings


def build_finder(settings: Settings, client: CowinClient, notifier: Notifier) -> SlotFinder:
    def make_query(session: Session, criteria: SearchCriteria, auth: AuthCriteria, run_state: RunState) -> CowinSlotQuery:
        return CowinSlotQuery(
            client,
            session,
            criteria,
            auth,
            run_state,
            notifier=notifier,
            dose=settings.dose,
            auto_book=settings.auto_book,
        )

    return SlotFinder(
        settings,
        gate=VersionGate(settings.version_check_url, APP_VERSION),
        authenticator=OtpAuthenticator(client, max_prompts=settings.otp_prompt_attempts),
        query_factory=make_query,
    )


def main(argv=None) -> int:
    args = _parse_args(argv)
    _setup_logging(args.verbose)
    signal.signal(signal.SIGTERM, _exit_on_sigterm)

    try:
        settings = _apply_overrides(load_settings(args.env_file), args)
    except SlotBotError as e:
        logger.error("%s failed: %s", e.stage, e)
        return 1

    notifier = Notifier(
        settings.telegram_bot_token,
        settings.telegram_chat_ids,
        timeout_seconds=settings.request_timeout_seconds,
    )
    notifier.notify_best_effort(
        f"SlotBot {APP_VERSION} started.\n"
        f"Mode: {'book' if settings.auto_book else 'report only'}, up to {settings.max_attempts} tries"
    )

    try:
        with CowinClient(
            base_url=settings.api_base_url,
            timeout_seconds=settings.request_timeout_seconds,
            retry_attempts=settings.request_retry_attempts,
        ) as client:
            outcome = build_finder(settings, client, notifier).run()

    except SlotBotError as e:
        logger.error("%s failed: %s", e.stage, e)
        notifier.notify_best_effort(f"SlotBot stopped with an error.\nStage: {e.stage}\nReason: {e}")
        return 1

    except KeyboardInterrupt:
        logger.info("Interrupted, exiting")
        return 130

    if outcome is RunOutcome.NOT_FOUND:
        notifier.notify_best_effort(f"SlotBot finished: no slot found after {settings.max_attempts} tries.")
    logger.info("Run finished: %s", outcome.value)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
