from django.db import migrations


REASONS = [
    "Atención médica",
    "Control dental",
    "Trámite familiar",
    "Emergencia familiar",
    "Malestar o enfermedad",
    "Actividad extraprogramática",
    "Otro",
]


def seed_withdrawal_reasons(apps, schema_editor):
    WithdrawalReason = apps.get_model("withdrawals", "WithdrawalReason")

    for name in REASONS:
        obj, _ = WithdrawalReason.objects.get_or_create(name=name, defaults={"is_active": True})
        if obj.is_active is not True:
            obj.is_active = True
            obj.save(update_fields=["is_active", "updated_at"])


def noop_reverse(apps, schema_editor):
    # Admins may have edited the catalog since.
    return


class Migration(migrations.Migration):

    dependencies = [
        ("withdrawals", "0001_initial"),
    ]

    operations = [
        migrations.RunPython(seed_withdrawal_reasons, noop_reverse),
    ]
