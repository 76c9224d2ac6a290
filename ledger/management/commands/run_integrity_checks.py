import json

from django.core.management.base import BaseCommand

from ledger.services.reconciliation import ReconciliationChecker


class Command(BaseCommand):
    help = "Check bookings, their audit trails and resource pools for inconsistencies (read-only)."

    def add_arguments(self, parser):
        parser.add_argument('--hospital', type=int, default=None)
        parser.add_argument('--status', default=None)
        parser.add_argument('--limit', type=int, default=None)
        parser.add_argument('--json', action='store_true', help='Print the full report as JSON')

    def handle(self, *args, **options):
        results = ReconciliationChecker().run_integrity_checks(
            hospital_id=options['hospital'], status=options['status'], limit=options['limit'],
        )
        if options['json']:
            self.stdout.write(json.dumps(results, indent=2))
            return
        for item in results['errors']:
            self.stdout.write(self.style.ERROR(f"booking {item['bookingId']}: {'; '.join(item['errors'])}"))
        for item in results['poolErrors']:
            self.stdout.write(self.style.ERROR(
                f"pool {item['resourceType']}@{item['hospitalId']}: {'; '.join(item['errors'])}"
            ))
        summary = (f"{results['validBookings']}/{results['totalBookings']} bookings valid, "
                   f"{results['warnings']} warnings, {len(results['poolErrors'])} unhealthy pools")
        if results['invalidBookings'] or results['poolErrors']:
            self.stdout.write(self.style.WARNING(summary))
        else:
            self.stdout.write(self.style.SUCCESS(summary))
