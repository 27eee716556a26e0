from __future__ import annotations

from django.core.management.base import BaseCommand
from django.utils import timezone

from withdrawals.models import PickupCredential
from withdrawals.services.credentials import expire_sweep


class Command(BaseCommand):
    help = "Elimina los códigos QR de retiro vencidos que nunca fueron utilizados."

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Solo muestra cuántos códigos eliminaría, sin modificar datos.",
        )

    def handle(self, *args, **options):
        dry_run: bool = bool(options["dry_run"])
        now = timezone.now()

        if dry_run:
            total = PickupCredential.objects.filter(consumed=False, expires_at__lt=now).count()
            self.stdout.write(f"[dry-run] Se eliminarían {total} códigos QR vencidos (expires_at < {now.isoformat()}).")
            return

        deleted = expire_sweep()
        if deleted == 0:
            self.stdout.write("No hay códigos QR vencidos por eliminar.")
            return

        self.stdout.write(self.style.SUCCESS(f"Códigos QR vencidos eliminados: {deleted}"))
