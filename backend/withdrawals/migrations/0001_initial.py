import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("students", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="WithdrawalReason",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=120, unique=True)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="RegisteredDelegate",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=150)),
                ("rut", models.CharField(blank=True, default="", max_length=12, verbose_name="RUT")),
                ("phone", models.CharField(blank=True, default="", max_length=20)),
                ("relationship_to_student", models.CharField(max_length=100, verbose_name="Parentesco")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "guardian",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="delegates",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="AdHocDelegateCredential",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=150)),
                ("rut", models.CharField(blank=True, default="", max_length=12, verbose_name="RUT")),
                ("phone", models.CharField(blank=True, default="", max_length=20)),
                ("relationship", models.CharField(max_length=100)),
                ("is_verified", models.BooleanField(default=False)),
                ("is_single_use", models.BooleanField(default=True)),
                ("consumed_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "guardian",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="adhoc_delegate_credentials",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
        ),
        migrations.CreateModel(
            name="PickupCredential",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "code",
                    models.CharField(
                        max_length=6,
                        validators=[
                            django.core.validators.RegexValidator(
                                message="El código debe tener exactamente 6 dígitos numéricos",
                                regex="^\\d{6}$",
                            )
                        ],
                    ),
                ),
                ("custom_reason", models.CharField(blank=True, default="", max_length=500)),
                ("expires_at", models.DateTimeField(db_index=True)),
                ("consumed", models.BooleanField(default=False)),
                ("consumed_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "assigned_delegate",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="assigned_credentials",
                        to="withdrawals.registereddelegate",
                    ),
                ),
                (
                    "issued_by",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="issued_pickup_credentials",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "reason",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="credentials",
                        to="withdrawals.withdrawalreason",
                    ),
                ),
                (
                    "student",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="pickup_credentials",
                        to="students.student",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["issued_by", "created_at"], name="withdrawals_cred_issuer_idx"),
                    models.Index(fields=["consumed", "expires_at"], name="withdrawals_cred_expiry_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("consumed", False)),
                        fields=("student",),
                        name="uniq_unconsumed_credential_per_student",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(("consumed", False)),
                        fields=("code",),
                        name="uniq_unconsumed_credential_code",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="WithdrawalRecord",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("custom_reason", models.CharField(blank=True, default="", max_length=500)),
                (
                    "method",
                    models.CharField(choices=[("QR", "Código QR"), ("MANUAL", "Manual")], max_length=10),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("PENDING", "Pendiente"), ("APPROVED", "Aprobado"), ("DENIED", "Rechazado")],
                        default="PENDING",
                        max_length=10,
                    ),
                ),
                ("contact_verified", models.BooleanField(default=False)),
                (
                    "retriever_kind",
                    models.CharField(
                        choices=[
                            ("USER", "Apoderado"),
                            ("REGISTERED_DELEGATE", "Delegado registrado"),
                            ("ADHOC_DELEGATE", "Delegado extraordinario"),
                        ],
                        max_length=24,
                    ),
                ),
                ("retriever_name", models.CharField(blank=True, default="", max_length=150)),
                ("retriever_rut", models.CharField(blank=True, default="", max_length=12)),
                ("retriever_relationship", models.CharField(blank=True, default="", max_length=100)),
                ("notes", models.TextField(blank=True, default="")),
                ("decided_at", models.DateTimeField()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "approver",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="approved_withdrawals",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "credential",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="withdrawals",
                        to="withdrawals.pickupcredential",
                    ),
                ),
                (
                    "guardian_authorizer",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="authorized_withdrawals",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "reason",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="withdrawals",
                        to="withdrawals.withdrawalreason",
                    ),
                ),
                (
                    "retriever_adhoc",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="withdrawals",
                        to="withdrawals.adhocdelegatecredential",
                    ),
                ),
                (
                    "retriever_delegate",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="withdrawals",
                        to="withdrawals.registereddelegate",
                    ),
                ),
                (
                    "retriever_user",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="retrieved_withdrawals",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "student",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="withdrawals",
                        to="students.student",
                    ),
                ),
            ],
            options={
                "ordering": ["-decided_at", "-id"],
                "indexes": [
                    models.Index(fields=["student", "decided_at"], name="withdrawals_rec_student_idx"),
                    models.Index(fields=["method", "status", "contact_verified"], name="withdrawals_rec_pending_idx"),
                    models.Index(fields=["approver", "status"], name="withdrawals_rec_approver_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="WithdrawalTransition",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "stage",
                    models.CharField(
                        choices=[
                            ("CREATION", "Creación"),
                            ("GUARDIAN", "Decisión del apoderado"),
                            ("INSPECTOR", "Confirmación del inspector"),
                        ],
                        max_length=12,
                    ),
                ),
                (
                    "action",
                    models.CharField(
                        blank=True,
                        choices=[("APPROVE", "Aprobar"), ("DENY", "Rechazar")],
                        default="",
                        max_length=10,
                    ),
                ),
                (
                    "from_status",
                    models.CharField(
                        blank=True,
                        choices=[("PENDING", "Pendiente"), ("APPROVED", "Aprobado"), ("DENIED", "Rechazado")],
                        default="",
                        max_length=10,
                    ),
                ),
                (
                    "to_status",
                    models.CharField(
                        choices=[("PENDING", "Pendiente"), ("APPROVED", "Aprobado"), ("DENIED", "Rechazado")],
                        max_length=10,
                    ),
                ),
                ("contact_verified", models.BooleanField(default=False)),
                ("actor_role", models.CharField(blank=True, default="", max_length=24)),
                ("comment", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "actor",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="withdrawal_transitions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "withdrawal",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="transitions",
                        to="withdrawals.withdrawalrecord",
                    ),
                ),
            ],
            options={
                "ordering": ["created_at", "id"],
            },
        ),
    ]
