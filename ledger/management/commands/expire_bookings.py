from django.core.management.base import BaseCommand, CommandError

from ledger.services.approvals import ApprovalOrchestrator


class Command(BaseCommand):
    help = "Expire pending bookings whose approval window has passed."

    def add_arguments(self, parser):
        parser.add_argument('--hospital', type=int, default=None, help='Only sweep this hospital id')

    def handle(self, *args, **options):
        result = ApprovalOrchestrator().process_expired_bookings(hospital_id=options['hospital'])
        if not result.success:
            raise CommandError(result.message)
        data = result.data
        for row in data['results']:
            if row['status'] == 'failed':
                self.stderr.write(f"booking {row['bookingId']}: {row['error']['message']}")
        self.stdout.write(self.style.SUCCESS(
            f"Expired {data['expired']} of {data['processed']} candidate bookings ({data['failed']} failed)"
        ))
