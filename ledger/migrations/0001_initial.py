from django.conf import settings
import django.contrib.auth.models
import django.contrib.auth.validators
from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone
import ledger.models


SETTLEMENT_CHOICES = [('pending', 'Pending'), ('partial', 'Partial'), ('completed', 'Completed')]

CLIENT_STAGE_CHOICES = [
    ('booking', 'Booking Amount'),
    ('pop_stage', 'POP Stage'),
    ('plywood_stage', 'Plywood Stage'),
    ('lamination_stage', 'Lamination Stage'),
    ('paint_stage', 'Paint Stage'),
    ('fabric_stage', 'Fabric Stage'),
]

VENDOR_STAGE_CHOICES = [
    ('pop_work', 'POP Work Complete'),
    ('material_unload', 'Material Unload (Ply + Hardware)'),
    ('raw_work', 'After Raw Work Complete'),
    ('laminate_work', 'After Laminate Complete'),
    ('color_fabric', 'After Color & Fabric Work'),
    ('final_inspection', 'Final Inspection + Post-Handover'),
]

ROLE_CHOICES = [
    ('admin', 'Admin'),
    ('design_head', 'Design Head'),
    ('designer', 'Designer'),
    ('execution_head', 'Execution Head'),
    ('execution_manager', 'Execution Manager'),
    ('site_supervisor', 'Site Supervisor'),
    ('client', 'Client'),
    ('account_manager', 'Account Manager'),
]


def payment_fields():
    return [
        ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
        ('created_at', models.DateTimeField(auto_now_add=True)),
        ('updated_at', models.DateTimeField(auto_now=True)),
        ('amount', models.DecimalField(decimal_places=2, max_digits=14)),
        ('payment_date', models.DateField()),
        ('payment_method', models.CharField(blank=True, max_length=50)),
        ('reference_number', models.CharField(blank=True, max_length=100)),
        ('notes', models.TextField(blank=True)),
        ('proof', models.FileField(blank=True, max_length=255, upload_to=ledger.models.proof_upload_to)),
    ]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('auth', '0012_alter_user_first_name_max_length'),
    ]

    operations = [
        migrations.CreateModel(
            name='User',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('password', models.CharField(max_length=128, verbose_name='password')),
                ('last_login', models.DateTimeField(blank=True, null=True, verbose_name='last login')),
                ('is_superuser', models.BooleanField(default=False, help_text='Designates that this user has all permissions without explicitly assigning them.', verbose_name='superuser status')),
                ('username', models.CharField(error_messages={'unique': 'A user with that username already exists.'}, help_text='Required. 150 characters or fewer. Letters, digits and @/./+/-/_ only.', max_length=150, unique=True, validators=[django.contrib.auth.validators.UnicodeUsernameValidator()], verbose_name='username')),
                ('first_name', models.CharField(blank=True, max_length=150, verbose_name='first name')),
                ('last_name', models.CharField(blank=True, max_length=150, verbose_name='last name')),
                ('email', models.EmailField(blank=True, max_length=254, verbose_name='email address')),
                ('is_staff', models.BooleanField(default=False, help_text='Designates whether the user can log into this admin site.', verbose_name='staff status')),
                ('is_active', models.BooleanField(default=True, help_text='Designates whether this user should be treated as active. Unselect this instead of deleting accounts.', verbose_name='active')),
                ('date_joined', models.DateTimeField(default=django.utils.timezone.now, verbose_name='date joined')),
                ('phone', models.CharField(blank=True, max_length=50)),
                ('role', models.CharField(choices=ROLE_CHOICES, default='designer', max_length=32)),
                ('groups', models.ManyToManyField(blank=True, help_text='The groups this user belongs to. A user will get all permissions granted to each of their groups.', related_name='user_set', related_query_name='user', to='auth.group', verbose_name='groups')),
                ('user_permissions', models.ManyToManyField(blank=True, help_text='Specific permissions for this user.', related_name='user_set', related_query_name='user', to='auth.permission', verbose_name='user permissions')),
            ],
            options={
                'verbose_name': 'user',
                'verbose_name_plural': 'users',
                'abstract': False,
            },
            managers=[
                ('objects', django.contrib.auth.models.UserManager()),
            ],
        ),
        migrations.CreateModel(
            name='Project',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('client_name', models.CharField(max_length=255)),
                ('client_email', models.EmailField(blank=True, max_length=254)),
                ('client_phone', models.CharField(blank=True, max_length=50)),
                ('location', models.CharField(blank=True, max_length=255)),
                ('status', models.CharField(choices=[('lead', 'Lead'), ('design_in_progress', 'Design In Progress'), ('design_approval_pending', 'Design Approval Pending'), ('design_approved', 'Design Approved'), ('execution_started', 'Execution Started'), ('work_in_progress', 'Work In Progress'), ('finishing', 'Finishing'), ('handover_pending', 'Handover Pending'), ('snag_fix', 'Snag Fix'), ('completed', 'Completed')], default='lead', max_length=32)),
                ('start_date', models.DateField(blank=True, null=True)),
                ('deadline', models.DateField(blank=True, null=True)),
                ('client_user', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='client_projects', to=settings.AUTH_USER_MODEL)),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='projects_created', to=settings.AUTH_USER_MODEL)),
                ('members', models.ManyToManyField(blank=True, related_name='assigned_projects', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['status'], name='ledger_project_status_idx'),
                    models.Index(fields=['client_name'], name='ledger_project_client_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ProjectCost',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('total_cost', models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ('project', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='cost', to='ledger.project')),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='project_costs_set', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'abstract': False,
            },
        ),
        migrations.CreateModel(
            name='VendorCost',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('total_cost', models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ('project', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='vendor_cost', to='ledger.project')),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='vendor_costs_set', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'abstract': False,
            },
        ),
        migrations.CreateModel(
            name='PaymentStage',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('position', models.PositiveSmallIntegerField(default=0)),
                ('percentage', models.PositiveSmallIntegerField()),
                ('required_amount', models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ('paid_amount', models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ('status', models.CharField(choices=SETTLEMENT_CHOICES, default='pending', max_length=16)),
                ('stage', models.CharField(choices=CLIENT_STAGE_CHOICES, max_length=32)),
                ('project', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='payment_stages', to='ledger.project')),
            ],
            options={
                'ordering': ['project', 'position'],
                'constraints': [
                    models.UniqueConstraint(fields=('project', 'stage'), name='unique_payment_stage_per_project'),
                ],
            },
        ),
        migrations.CreateModel(
            name='VendorPaymentStage',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('position', models.PositiveSmallIntegerField(default=0)),
                ('percentage', models.PositiveSmallIntegerField()),
                ('required_amount', models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ('paid_amount', models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ('status', models.CharField(choices=SETTLEMENT_CHOICES, default='pending', max_length=16)),
                ('stage', models.CharField(choices=VENDOR_STAGE_CHOICES, max_length=32)),
                ('project', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='vendor_payment_stages', to='ledger.project')),
            ],
            options={
                'ordering': ['project', 'position'],
                'constraints': [
                    models.UniqueConstraint(fields=('project', 'stage'), name='unique_vendor_payment_stage_per_project'),
                ],
            },
        ),
        migrations.CreateModel(
            name='PaymentTransaction',
            fields=payment_fields() + [
                ('project', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='payment_transactions', to='ledger.project')),
                ('stage', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='transactions', to='ledger.paymentstage')),
                ('recorded_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='payment_transactions_recorded', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-payment_date', '-created_at'],
                'indexes': [
                    models.Index(fields=['payment_date'], name='ledger_paytx_date_idx'),
                    models.Index(fields=['stage', 'payment_date'], name='ledger_paytx_stage_date_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='VendorPaymentTransaction',
            fields=payment_fields() + [
                ('project', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='vendor_payment_transactions', to='ledger.project')),
                ('stage', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='transactions', to='ledger.vendorpaymentstage')),
                ('recorded_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='vendor_payment_transactions_recorded', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-payment_date', '-created_at'],
                'indexes': [
                    models.Index(fields=['payment_date'], name='ledger_vpaytx_date_idx'),
                    models.Index(fields=['stage', 'payment_date'], name='ledger_vpaytx_stage_date_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ExtraWork',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=14)),
                ('description', models.TextField()),
                ('status', models.CharField(choices=SETTLEMENT_CHOICES, default='pending', max_length=16)),
                ('paid_amount', models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ('project', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='extra_works', to='ledger.project')),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='extra_works_created', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['project', 'status'], name='ledger_xwork_proj_status_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='VendorExtraWork',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=14)),
                ('description', models.TextField()),
                ('status', models.CharField(choices=SETTLEMENT_CHOICES, default='pending', max_length=16)),
                ('paid_amount', models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ('project', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='vendor_extra_works', to='ledger.project')),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='vendor_extra_works_created', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['project', 'status'], name='ledger_vxwork_proj_status_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ExtraWorkPayment',
            fields=payment_fields() + [
                ('extra_work', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='payments', to='ledger.extrawork')),
                ('recorded_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='extra_work_payments_recorded', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-payment_date', '-created_at'],
                'indexes': [
                    models.Index(fields=['extra_work', 'payment_date'], name='ledger_xwpay_work_date_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='VendorExtraWorkPayment',
            fields=payment_fields() + [
                ('extra_work', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='payments', to='ledger.vendorextrawork')),
                ('recorded_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='vendor_extra_work_payments_recorded', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-payment_date', '-created_at'],
                'indexes': [
                    models.Index(fields=['extra_work', 'payment_date'], name='ledger_vxwpay_work_date_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='RolePermission',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('role', models.CharField(choices=ROLE_CHOICES, max_length=32, unique=True)),
                ('projects', models.BooleanField(default=False)),
                ('accounts', models.BooleanField(default=False)),
                ('vendor_accounts', models.BooleanField(default=False)),
                ('users', models.BooleanField(default=False)),
            ],
            options={
                'abstract': False,
            },
        ),
        migrations.CreateModel(
            name='StaffActivity',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('category', models.CharField(choices=[('projects', 'Projects'), ('accounts', 'Accounts'), ('vendor_accounts', 'Vendor Accounts'), ('users', 'Users'), ('system', 'System')], default='system', max_length=50)),
                ('message', models.CharField(max_length=500)),
                ('related_url', models.CharField(blank=True, max_length=255)),
                ('actor', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='staff_activity', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['created_at'], name='ledger_activity_created_idx'),
                    models.Index(fields=['actor', 'created_at'], name='ledger_activity_actor_idx'),
                    models.Index(fields=['category', 'created_at'], name='ledger_activity_cat_idx'),
                ],
            },
        ),
    ]
