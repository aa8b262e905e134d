from rest_framework import serializers
from django.contrib.auth import get_user_model

User = get_user_model()


class LoginSerializer(serializers.Serializer):
    """
    Serializer for username/password login
    """
    username = serializers.CharField(max_length=150)
    password = serializers.CharField(max_length=128, write_only=True, trim_whitespace=False)


class RefreshSerializer(serializers.Serializer):
    """
    Refresh token can come in the body; the cookie is used otherwise
    """
    refresh = serializers.CharField(required=False, allow_blank=True)


class VerifySerializer(serializers.Serializer):
    token = serializers.CharField(required=False, allow_blank=True)


class UserSerializer(serializers.ModelSerializer):
    """
    Public representation of a staff account
    """
    permissions = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            'id', 'username', 'name', 'phone', 'role', 'is_active',
            'permissions', 'last_login', 'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_permissions(self, obj):
        return sorted(obj.permissions)


class UserCreateSerializer(serializers.Serializer):
    """
    Input for creating a staff account; business rules live in UserService
    """
    username = serializers.CharField(max_length=150)
    password = serializers.CharField(max_length=128, write_only=True, trim_whitespace=False)
    name = serializers.CharField(max_length=255)
    phone = serializers.CharField(max_length=50, required=False, allow_blank=True, allow_null=True)
    role = serializers.ChoiceField(choices=User.Role.choices, required=False)


class UserUpdateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255, required=False)
    phone = serializers.CharField(max_length=50, required=False, allow_blank=True, allow_null=True)
    role = serializers.ChoiceField(choices=User.Role.choices, required=False)
    is_active = serializers.BooleanField(required=False)


class ChangePasswordSerializer(serializers.Serializer):
    current_password = serializers.CharField(
        max_length=128, required=False, allow_blank=True, trim_whitespace=False,
        help_text="Required when changing your own password"
    )
    new_password = serializers.CharField(max_length=128, trim_whitespace=False)


class TokenResponseSerializer(serializers.Serializer):
    """
    Serializer for JWT token response
    """
    access = serializers.CharField()
    refresh = serializers.CharField()
    user = UserSerializer()
