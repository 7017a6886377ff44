from django.core.management.base import BaseCommand

from ledger.finance_utils import rebuild_payment_ledgers


class Command(BaseCommand):
    help = "Recompute stage and extra-work paid amounts from recorded payments (repair tool)."

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Report what would change without saving anything.',
        )
        parser.add_argument(
            '--side',
            choices=('client', 'vendor', 'both'),
            default='both',
            help='Which ledger to rebuild.',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        if dry_run:
            self.stdout.write(self.style.WARNING("DRY RUN MODE: No changes will be saved."))

        sides = ('client', 'vendor') if options['side'] == 'both' else (options['side'],)
        total = 0
        for side in sides:
            fixed = rebuild_payment_ledgers(vendor=side == 'vendor', dry_run=dry_run)
            self.stdout.write(f"{side.title()} ledger: {fixed} row(s) out of sync.")
            total += fixed

        if dry_run:
            self.stdout.write(self.style.WARNING(f"Dry run complete. {total} row(s) would be rebuilt."))
        else:
            self.stdout.write(self.style.SUCCESS(f"Rebuilt {total} ledger row(s)."))
