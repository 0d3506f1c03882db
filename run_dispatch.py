"""
Dispatch Runner - send one broadcast from the command line
===========================================================

Dispatches a check-in, poll or announcement to its targeted employees
without going through the web API. Useful for scheduled jobs.

    python run_dispatch.py <organization_id> <broadcast_id>
"""

import sys
import logging

from wellpulse.application import BroadcastService, DispatchEngine, RecipientResolver
from wellpulse.domain.errors import WellPulseError
from wellpulse.infrastructure.config import get_settings
from wellpulse.infrastructure.messaging import TwilioProvider
from wellpulse.infrastructure.persistence import init_database

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def run_dispatch(organization_id: str, broadcast_id: str) -> int:
    """Dispatch one broadcast. Returns a process exit code."""

    print("\n" + "=" * 60)
    print("   WellPulse - Dispatch Runner")
    print("=" * 60 + "\n")

    settings = get_settings()
    for issue in settings.validate():
        print(f"   {issue}")

    if not settings.twilio.is_configured:
        print("Twilio credentials not configured")
        return 2

    db = init_database(settings.database.path)
    engine = DispatchEngine(
        db,
        TwilioProvider(settings.twilio),
        from_address=settings.twilio.broadcast_number,
        settings=settings.dispatch,
        channel_prefix=settings.twilio.channel_prefix,
    )
    service = BroadcastService(db, RecipientResolver(db), engine)

    try:
        result = service.send(broadcast_id, organization_id)
    except WellPulseError as e:
        print(f"Dispatch refused: {e}")
        return 1

    print("\n" + "=" * 60)
    print("Dispatch Complete!")
    print(f"   Eligible: {result.total_eligible} | Sent: {result.sent} | Failed: {result.failed}")
    for error in result.errors:
        print(f"   - {error}")
    print("=" * 60 + "\n")

    return 0 if result.success else 1


if __name__ == "__main__":
    if len(sys.argv) != 3:
        print(__doc__)
        sys.exit(2)
    sys.exit(run_dispatch(sys.argv[1], sys.argv[2]))
