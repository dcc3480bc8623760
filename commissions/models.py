import uuid

from django.db import models
from django.utils import timezone


class Employee(models.Model):
    ACCOUNT_STATUS_CHOICES = [
        ('active', 'Active'),
        ('suspended', 'Suspended'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    employee_code = models.CharField(max_length=32, unique=True)
    name = models.CharField(max_length=200)
    email = models.EmailField(blank=True, default='')
    is_active = models.BooleanField(default=True)
    account_status = models.CharField(max_length=20, choices=ACCOUNT_STATUS_CHOICES, default='active')
    # 缓存计数器，真实数据以 commissions 表为准
    commissions = models.IntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'employees'

    def __str__(self):
        return f"{self.name} ({self.employee_code})"

    # DRF 的 IsAuthenticated 只看这两个属性
    is_authenticated = True
    is_anonymous = False

    @property
    def role_names(self):
        return [r.role for r in self.roles.all() if r.is_active]

    def has_role(self, role):
        return role in self.role_names


class EmployeeRole(models.Model):
    ROLE_CHOICES = [
        ('admin', 'Admin'),
        ('sales', 'Sales'),
        ('coordinator', 'Coordinator'),
        ('data_entry', 'Data Entry'),
        ('finance', 'Finance'),
        ('team_leader', 'Team Leader'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    employee = models.ForeignKey(Employee, on_delete=models.CASCADE, related_name='roles')
    role = models.CharField(max_length=20, choices=ROLE_CHOICES)
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = 'employee_roles'
        unique_together = [('employee', 'role')]


class Hospital(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=200)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'hospitals'


class Speciality(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=200, unique=True)

    class Meta:
        db_table = 'specialities'


class Doctor(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=200)
    hospital = models.ForeignKey(Hospital, on_delete=models.SET_NULL, null=True, blank=True, related_name='doctors')

    class Meta:
        db_table = 'doctors'


class Patient(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name_english = models.CharField(max_length=200)
    national_id = models.CharField(max_length=32, blank=True, default='')
    phone_number = models.CharField(max_length=32, blank=True, default='')
    dob = models.DateField(null=True, blank=True)
    sales_person = models.ForeignKey(
        Employee, on_delete=models.SET_NULL, null=True, blank=True, related_name='assigned_patients',
    )
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'patients'


class Visit(models.Model):
    """
    一次到院记录。分类（新/老/复诊）不落库，每次由 classification 模块现算。
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='visits')
    hospital = models.ForeignKey(Hospital, on_delete=models.PROTECT, related_name='visits')
    visit_date = models.DateTimeField()
    coordinator = models.ForeignKey(
        Employee, on_delete=models.SET_NULL, null=True, blank=True, related_name='coordinated_visits',
    )
    sales = models.ForeignKey(
        Employee, on_delete=models.SET_NULL, null=True, blank=True, related_name='sales_visits',
    )
    is_emergency = models.BooleanField(default=False)
    # 同一天多次到院时用 created_at 决定先后，所以允许显式赋值
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'visits'
        indexes = [
            models.Index(fields=['patient', 'visit_date']),
            models.Index(fields=['hospital', 'visit_date']),
        ]


class VisitSpeciality(models.Model):
    STATUS_CHOICES = [
        ('scheduled', 'Scheduled'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    visit = models.ForeignKey(Visit, on_delete=models.CASCADE, related_name='specialities')
    speciality = models.ForeignKey(Speciality, on_delete=models.PROTECT, related_name='visit_specialities')
    doctor = models.ForeignKey(Doctor, on_delete=models.SET_NULL, null=True, blank=True)
    scheduled_time = models.DateTimeField(null=True, blank=True)
    details = models.TextField(blank=True, default='')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='scheduled')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'visit_specialities'


class FollowUpTask(models.Model):
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('postponed', 'Postponed'),
        ('approved', 'Approved'),
        ('rejected', 'Rejected'),
    ]
    OPEN_STATUSES = ('pending', 'postponed')

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='follow_up_tasks')
    assigned_to = models.ForeignKey(Employee, on_delete=models.PROTECT, related_name='follow_up_tasks')
    assigned_by = models.ForeignKey(
        Employee, on_delete=models.SET_NULL, null=True, blank=True, related_name='assigned_follow_up_tasks',
    )
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')
    notes = models.TextField(blank=True, default='')
    due_date = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'follow_up_tasks'


class Appointment(models.Model):
    STATUS_CHOICES = [
        ('scheduled', 'Scheduled'),
        ('assigned', 'Assigned'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
        ('no_show', 'No Show'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='appointments')
    hospital = models.ForeignKey(Hospital, on_delete=models.PROTECT, related_name='appointments')
    sales_person = models.ForeignKey(
        Employee, on_delete=models.SET_NULL, null=True, blank=True, related_name='sales_appointments',
    )
    created_by = models.ForeignKey(
        Employee, on_delete=models.SET_NULL, null=True, blank=True, related_name='created_appointments',
    )
    scheduled_date = models.DateTimeField()
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='scheduled')
    # 预约时冻结的“是否新患者”快照，之后不再更新
    is_new_patient_at_creation = models.BooleanField(null=True, blank=True)
    created_from_follow_up_task = models.ForeignKey(
        FollowUpTask, on_delete=models.SET_NULL, null=True, blank=True, related_name='appointments',
    )
    visit = models.ForeignKey(Visit, on_delete=models.SET_NULL, null=True, blank=True, related_name='appointments')
    notes = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'appointments'
        indexes = [
            models.Index(fields=['patient', 'hospital', 'scheduled_date']),
        ]


class AppointmentSpeciality(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    appointment = models.ForeignKey(Appointment, on_delete=models.CASCADE, related_name='specialities')
    speciality = models.ForeignKey(Speciality, on_delete=models.PROTECT)
    doctor = models.ForeignKey(Doctor, on_delete=models.SET_NULL, null=True, blank=True)
    scheduled_time = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'appointment_specialities'


class Commission(models.Model):
    TYPE_PATIENT_CREATION = 'PATIENT_CREATION'
    TYPE_FOLLOW_UP = 'FOLLOW_UP'
    TYPE_VISIT_SPECIALITY_ADDITION = 'VISIT_SPECIALITY_ADDITION'
    TYPE_NOMINATION_CONVERSION = 'NOMINATION_CONVERSION'
    TYPE_MANUAL_ADJUSTMENT = 'MANUAL_ADJUSTMENT'

    TYPE_CHOICES = [
        (TYPE_PATIENT_CREATION, 'Patient creation'),
        (TYPE_FOLLOW_UP, 'Follow-up'),
        (TYPE_VISIT_SPECIALITY_ADDITION, 'Visit speciality addition'),
        (TYPE_NOMINATION_CONVERSION, 'Nomination conversion'),
        (TYPE_MANUAL_ADJUSTMENT, 'Manual adjustment'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    employee = models.ForeignKey(Employee, on_delete=models.CASCADE, related_name='commission_entries')
    type = models.CharField(max_length=40, choices=TYPE_CHOICES)
    amount = models.IntegerField(default=1)
    # 业务日期 YYYY-MM-DD（迪拜时间），报表按它筛选
    period = models.CharField(max_length=10)
    description = models.TextField(blank=True, default='')
    patient = models.ForeignKey(Patient, on_delete=models.SET_NULL, null=True, blank=True, related_name='commissions')
    visit = models.ForeignKey(Visit, on_delete=models.SET_NULL, null=True, blank=True, related_name='commissions')
    visit_speciality = models.ForeignKey(
        VisitSpeciality, on_delete=models.SET_NULL, null=True, blank=True, related_name='commissions',
    )
    # 一个随访任务只发一次 FOLLOW_UP
    follow_up_task = models.ForeignKey(
        FollowUpTask, on_delete=models.SET_NULL, null=True, blank=True, related_name='commissions',
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'commissions'
        indexes = [
            models.Index(fields=['employee', 'type', 'period']),
        ]


class Team(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=200)
    leader = models.ForeignKey(Employee, on_delete=models.PROTECT, related_name='led_teams')
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'teams'


class TeamMember(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    team = models.ForeignKey(Team, on_delete=models.CASCADE, related_name='members')
    employee = models.ForeignKey(Employee, on_delete=models.CASCADE, related_name='team_memberships')

    class Meta:
        db_table = 'team_members'
        unique_together = [('team', 'employee')]


class Target(models.Model):
    TYPE_CHOICES = [
        ('daily', 'Daily'),
        ('weekly', 'Weekly'),
        ('monthly', 'Monthly'),
    ]
    CATEGORY_CHOICES = [
        ('new_patients', 'New Patients'),
        ('follow_up_patients', 'Follow-up Patients'),
        ('specialties', 'Specialties'),
        ('nominations', 'Nominations'),
        ('custom', 'Custom'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    assigned_to = models.ForeignKey(Employee, on_delete=models.CASCADE, related_name='targets')
    assigned_by = models.ForeignKey(
        Employee, on_delete=models.SET_NULL, null=True, blank=True, related_name='assigned_targets',
    )
    team = models.ForeignKey(Team, on_delete=models.CASCADE, null=True, blank=True, related_name='targets')
    type = models.CharField(max_length=10, choices=TYPE_CHOICES)
    category = models.CharField(max_length=30, choices=CATEGORY_CHOICES)
    description = models.TextField(blank=True, default='')
    target_value = models.PositiveIntegerField()
    # 只有 custom 类目会直接使用这个字段，其他类目按需现算
    current_value = models.IntegerField(default=0)
    start_date = models.DateField()
    end_date = models.DateField()
    is_active = models.BooleanField(default=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'targets'


class Nomination(models.Model):
    STATUS_CHOICES = [
        ('new', 'New'),
        ('contacting', 'Contacting'),
        ('contacted_approved', 'Contacted - Approved'),
        ('contacted_rejected', 'Contacted - Rejected'),
    ]
    TRANSITIONS = {
        'new': ('contacting', 'contacted_approved', 'contacted_rejected'),
        'contacting': ('contacted_approved', 'contacted_rejected'),
        'contacted_approved': (),
        'contacted_rejected': (),
    }

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    nominated_patient_name = models.CharField(max_length=200)
    phone_number = models.CharField(max_length=32, blank=True, default='')
    referrer = models.ForeignKey(
        Patient, on_delete=models.SET_NULL, null=True, blank=True, related_name='nominations_made',
    )
    sales_person = models.ForeignKey(
        Employee, on_delete=models.SET_NULL, null=True, blank=True, related_name='sales_nominations',
    )
    coordinator = models.ForeignKey(
        Employee, on_delete=models.SET_NULL, null=True, blank=True, related_name='coordinated_nominations',
    )
    status = models.CharField(max_length=30, choices=STATUS_CHOICES, default='new')
    converted_to_patient = models.OneToOneField(
        Patient, on_delete=models.SET_NULL, null=True, blank=True, related_name='source_nomination',
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'nominations'
