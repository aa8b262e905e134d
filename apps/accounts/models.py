from django.db import models
from django.contrib.auth.models import AbstractUser, BaseUserManager

from .policy import permissions_for


class ImmutableRecordError(Exception):
    """Raised when code tries to modify or delete an append-only record"""


class AppendOnlyModel(models.Model):
    """
    Abstract base for audit-style tables: rows can be inserted, never
    updated or deleted through the ORM instance API
    """

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ImmutableRecordError(
                f"{self.__class__.__name__} records are append-only"
            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ImmutableRecordError(
            f"{self.__class__.__name__} records cannot be deleted"
        )


class UserManager(BaseUserManager):
    """
    Manager for staff accounts identified by username
    """

    def create_user(self, username, password=None, **extra_fields):
        """
        Create and save a staff user with the given username and password.
        """
        if not username:
            raise ValueError('The username must be set')

        username = self.model.normalize_username(username)
        user = self.model(username=username, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, username, password=None, **extra_fields):
        """
        Create and save an admin account with Django superuser rights.
        """
        extra_fields.setdefault('role', User.Role.ADMIN)
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('is_active', True)
        extra_fields.setdefault('name', username)

        if extra_fields.get('role') != User.Role.ADMIN:
            raise ValueError('Superuser must have role=admin.')
        if extra_fields.get('is_superuser') is not True:
            raise ValueError('Superuser must have is_superuser=True.')

        return self.create_user(username, password, **extra_fields)


class User(AbstractUser):
    """
    Staff account (admin, vendor or controller)
    """

    class Role(models.TextChoices):
        ADMIN = 'admin', 'Admin'
        VENDOR = 'vendor', 'Vendor'
        CONTROLLER = 'controller', 'Controller'

    first_name = None
    last_name = None
    email = None

    name = models.CharField(max_length=255, help_text="Display name")
    phone = models.CharField(max_length=50, null=True, blank=True)
    role = models.CharField(
        max_length=20,
        choices=Role.choices,
        default=Role.VENDOR,
        db_index=True,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    REQUIRED_FIELDS = ['name']

    objects = UserManager()

    class Meta:
        db_table = 'users'
        verbose_name = 'User'
        verbose_name_plural = 'Users'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['is_active'], name='users_is_active_idx'),
        ]

    def __str__(self):
        return f"{self.username} ({self.role})"

    @property
    def permissions(self):
        return permissions_for(self.role)

    def save(self, *args, **kwargs):
        # Admins keep access to the Django admin site
        self.is_staff = self.role == self.Role.ADMIN
        super().save(*args, **kwargs)


class AuditLog(AppendOnlyModel):
    """
    Append-only trail of sensitive operations
    """
    user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_logs',
    )
    action = models.CharField(max_length=100, db_index=True)
    entity_type = models.CharField(max_length=50, null=True, blank=True)
    entity_id = models.CharField(max_length=255, null=True, blank=True)
    details = models.JSONField(default=dict, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.TextField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        db_table = 'audit_logs'
        verbose_name = 'Audit log entry'
        verbose_name_plural = 'Audit log'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['entity_type', 'entity_id'], name='audit_logs_entity_idx'),
        ]

    def __str__(self):
        return f"{self.action} {self.entity_type or ''}:{self.entity_id or ''}"
