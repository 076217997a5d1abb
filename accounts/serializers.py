from django.contrib.auth import get_user_model
from django.contrib.auth.password_validation import validate_password
from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from .models import Role, SELF_REGISTER_ROLES

User = get_user_model()


class UserSerializer(serializers.ModelSerializer):
    full_name = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            "id", "username", "first_name", "last_name", "full_name",
            "email", "phone", "role", "is_active", "date_joined",
        ]
        read_only_fields = ["id", "role", "date_joined"]

    def get_full_name(self, obj):
        return obj.get_full_name()


class RegisterUserSerializer(serializers.ModelSerializer):
    """
    Rules:
      - Only sales_admin / sales_executive can self-register.
      - username and email must be unique.
    """
    password = serializers.CharField(write_only=True, min_length=6, required=True)
    email = serializers.EmailField(required=True)
    first_name = serializers.CharField(required=True)
    last_name = serializers.CharField(required=True)
    role = serializers.ChoiceField(choices=Role.choices)

    class Meta:
        model = User
        fields = [
            "username", "password",
            "first_name", "last_name", "email", "phone",
            "role",
        ]
        extra_kwargs = {"username": {"min_length": 3}}

    def validate_role(self, value):
        if value not in SELF_REGISTER_ROLES:
            raise serializers.ValidationError("Invalid role for registration.")
        return value

    def validate_email(self, value):
        value = value.lower()
        if User.objects.filter(email__iexact=value).exists():
            raise serializers.ValidationError("Email already exists.")
        return value

    def validate(self, data):
        validate_password(data["password"], user=User(username=data.get("username")))
        return data

    def create(self, validated_data):
        raw_password = validated_data.pop("password")
        user = User(**validated_data)
        user.set_password(raw_password)
        user.save()
        return user


class MyTokenObtainPairSerializer(TokenObtainPairSerializer):
    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)

        token["username"] = user.username
        token["role"] = user.role
        token["is_superuser"] = user.is_superuser

        return token

    def validate(self, attrs):
        """
        Shape of the /login/ response: tokens + user payload.
        """
        data = super().validate(attrs)
        user = self.user

        data["user"] = {
            "id": user.id,
            "username": user.username,
            "email": user.email,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "role": user.role,
        }
        return data
