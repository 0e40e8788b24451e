from django.db import models

# Every model here is keyed by the remote system's external_id. Ingestion only
# writes the fields its mappers produce; anything else (geo data, notes) is local.


class UnitStatus(models.TextChoices):
    OCCUPIED = "occupied"
    VACANT = "vacant"
    NOT_READY = "not_ready"


class LeaseStatus(models.TextChoices):
    ACTIVE = "active"
    PAST = "past"
    FUTURE = "future"


class WorkOrderStatus(models.TextChoices):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class WorkOrderPriority(models.TextChoices):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    EMERGENCY = "emergency"


class Property(models.Model):
    external_id = models.CharField(max_length=64, unique=True)
    name = models.CharField(max_length=255)
    address_line1 = models.CharField(max_length=255, blank=True)
    address_line2 = models.CharField(max_length=255, blank=True)
    city = models.CharField(max_length=128, blank=True)
    state = models.CharField(max_length=64, blank=True)
    zip = models.CharField(max_length=20, blank=True)
    county = models.CharField(max_length=128, blank=True)
    property_type = models.CharField(max_length=64, blank=True)
    portfolio = models.CharField(max_length=255, blank=True)
    unit_count = models.PositiveIntegerField(blank=True, null=True)
    year_built = models.PositiveIntegerField(blank=True, null=True)
    total_sqft = models.PositiveIntegerField(blank=True, null=True)
    is_active = models.BooleanField(default=True)
    latitude = models.DecimalField(max_digits=9, decimal_places=6, blank=True, null=True)
    longitude = models.DecimalField(max_digits=9, decimal_places=6, blank=True, null=True)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        verbose_name_plural = "properties"

    def __str__(self):
        return self.name


class Unit(models.Model):
    external_id = models.CharField(max_length=64, unique=True)
    property = models.ForeignKey(Property, on_delete=models.CASCADE, related_name="units")
    unit_number = models.CharField(max_length=64)
    unit_type = models.CharField(max_length=64, blank=True)
    sqft = models.PositiveIntegerField(blank=True, null=True)
    bedrooms = models.PositiveSmallIntegerField(blank=True, null=True)
    bathrooms = models.DecimalField(max_digits=4, decimal_places=1, blank=True, null=True)
    status = models.CharField(max_length=32, choices=UnitStatus.choices, default=UnitStatus.VACANT)
    market_rent = models.DecimalField(max_digits=12, decimal_places=2, blank=True, null=True)
    advertised_rent = models.DecimalField(max_digits=12, decimal_places=2, blank=True, null=True)
    is_active = models.BooleanField(default=True)
    rentable = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [models.Index(fields=["property", "status"], name="portfolio_unit_status_idx")]
        ordering = ["property", "unit_number"]

    def __str__(self):
        return f"{self.property} #{self.unit_number}"


class Vendor(models.Model):
    external_id = models.CharField(max_length=64, unique=True)
    company_name = models.CharField(max_length=255)
    contact_name = models.CharField(max_length=255, blank=True)
    email = models.CharField(max_length=255, blank=True)
    phone = models.CharField(max_length=64, blank=True)
    vendor_type = models.CharField(max_length=64, blank=True)
    trades = models.CharField(max_length=255, blank=True)
    liability_ins_expires = models.DateField(blank=True, null=True)
    workers_comp_expires = models.DateField(blank=True, null=True)
    do_not_use = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["company_name"]

    def __str__(self):
        return self.company_name


class Lease(models.Model):
    external_id = models.CharField(max_length=64, unique=True)
    unit = models.ForeignKey(Unit, on_delete=models.CASCADE, related_name="leases")
    start_date = models.DateField(blank=True, null=True)
    end_date = models.DateField(blank=True, null=True)
    rent = models.DecimalField(max_digits=12, decimal_places=2, blank=True, null=True)
    security_deposit = models.DecimalField(max_digits=12, decimal_places=2, blank=True, null=True)
    status = models.CharField(max_length=32, choices=LeaseStatus.choices, default=LeaseStatus.ACTIVE)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [models.Index(fields=["unit", "status"], name="portfolio_lease_status_idx")]
        ordering = ["-start_date"]

    def __str__(self):
        return f"Lease {self.external_id} ({self.status})"


class WorkOrder(models.Model):
    external_id = models.CharField(max_length=64, unique=True)
    property = models.ForeignKey(Property, on_delete=models.CASCADE, related_name="work_orders")
    unit = models.ForeignKey(
        Unit, on_delete=models.SET_NULL, blank=True, null=True, related_name="work_orders"
    )
    vendor = models.ForeignKey(
        Vendor, on_delete=models.SET_NULL, blank=True, null=True, related_name="work_orders"
    )
    vendor_name = models.CharField(max_length=255, blank=True)
    category = models.CharField(max_length=128, blank=True)
    description = models.TextField(blank=True)
    status = models.CharField(
        max_length=32, choices=WorkOrderStatus.choices, default=WorkOrderStatus.OPEN
    )
    priority = models.CharField(
        max_length=32, choices=WorkOrderPriority.choices, default=WorkOrderPriority.NORMAL
    )
    opened_at = models.DateTimeField(blank=True, null=True)
    closed_at = models.DateTimeField(blank=True, null=True)
    amount = models.DecimalField(max_digits=12, decimal_places=2, blank=True, null=True)
    vendor_bill_amount = models.DecimalField(max_digits=12, decimal_places=2, blank=True, null=True)
    estimate_amount = models.DecimalField(max_digits=12, decimal_places=2, blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [models.Index(fields=["property", "status"], name="portfolio_wo_status_idx")]
        ordering = ["-opened_at"]

    def __str__(self):
        return f"Work order {self.external_id} ({self.status})"


class Expense(models.Model):
    external_id = models.CharField(max_length=64, unique=True)
    property = models.ForeignKey(
        Property, on_delete=models.SET_NULL, blank=True, null=True, related_name="expenses"
    )
    vendor = models.ForeignKey(
        Vendor, on_delete=models.SET_NULL, blank=True, null=True, related_name="expenses"
    )
    payee_name = models.CharField(max_length=255, blank=True)
    gl_account_number = models.CharField(max_length=32, blank=True)
    gl_account_name = models.CharField(max_length=255, blank=True)
    amount = models.DecimalField(max_digits=12, decimal_places=2, blank=True, null=True)
    paid = models.DecimalField(max_digits=12, decimal_places=2, blank=True, null=True)
    unpaid = models.DecimalField(max_digits=12, decimal_places=2, blank=True, null=True)
    bill_date = models.DateField(blank=True, null=True)
    due_date = models.DateField(blank=True, null=True)
    description = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["gl_account_number", "bill_date"], name="portfolio_exp_gl_date_idx")
        ]
        ordering = ["-bill_date"]

    def __str__(self):
        return f"Expense {self.external_id} {self.amount}"
