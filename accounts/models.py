# accounts/models.py
from decimal import Decimal

from django.conf import settings
from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin, BaseUserManager
from django.db import models
from django.utils import timezone


class UserManager(BaseUserManager):
    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError("Email required")
        email = self.normalize_email(email)
        user = self.model(email=email, **extra_fields)
        if password:
            user.set_password(password)
        else:
            user.set_unusable_password()
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('role', 'admin')
        return self.create_user(email, password, **extra_fields)


class User(AbstractBaseUser, PermissionsMixin):
    ROLE_CHOICES = [
        ("customer", "Customer"),
        ("artist", "Artist"),
        ("admin", "Admin"),
    ]

    TIER_CHOICES = [
        ("free", "Free"),
        ("pro", "Pro"),
        ("enterprise", "Enterprise"),
    ]

    STRIPE_ACCOUNT_STATUS_CHOICES = [
        ("pending", "Pending"),
        ("active", "Active"),
        ("restricted", "Restricted"),
        ("rejected", "Rejected"),
    ]

    email = models.EmailField(unique=True)
    full_name = models.CharField(max_length=150, blank=True)
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default="customer")
    subscription_tier = models.CharField(max_length=20, choices=TIER_CHOICES, default="free")

    # Artist commission settings
    commission_price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    commission_delivery_time = models.CharField(
        max_length=50, blank=True, default="",
        help_text="Free text, e.g. '2 weeks'. Used to compute commission expiry."
    )

    # Settlement profile, owned by account management
    stripe_account_id = models.CharField(max_length=64, null=True, blank=True)
    stripe_payouts_enabled = models.BooleanField(default=False)
    stripe_onboarding_complete = models.BooleanField(default=False)
    stripe_account_status = models.CharField(
        max_length=20, choices=STRIPE_ACCOUNT_STATUS_CHOICES, default="pending"
    )

    is_active = models.BooleanField(default=True)
    is_staff = models.BooleanField(default=False)
    date_joined = models.DateTimeField(default=timezone.now)

    objects = UserManager()

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    def __str__(self):
        return f"{self.email} ({self.role})"

    @property
    def is_admin(self):
        return self.role == "admin" or self.is_superuser

    def is_payout_eligible(self):
        """Payouts only go to a connected, active account with payouts switched on."""
        return bool(
            self.stripe_account_id
            and self.stripe_account_status == "active"
            and self.stripe_payouts_enabled
        )

    def payout_ineligibility_reason(self):
        if not self.stripe_account_id:
            return "No Stripe account set up"
        if not self.stripe_payouts_enabled:
            return "Stripe account is not enabled for payouts"
        if self.stripe_account_status != "active":
            return f"Stripe account status is {self.stripe_account_status}"
        return None

    def platform_margin_rate(self):
        rates = settings.PLATFORM_MARGIN_RATES
        return rates.get(self.subscription_tier, rates["free"])
