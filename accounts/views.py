from django.contrib.auth import get_user_model
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework_simplejwt.views import TokenObtainPairView

from .models import MANAGER_ROLES
from .serializers import (
    MyTokenObtainPairSerializer,
    RegisterUserSerializer,
    UserSerializer,
)

User = get_user_model()


class UserViewSet(viewsets.ReadOnlyModelViewSet):
    """
    /api/accounts/users/        managers -> everyone (assignment dropdowns), others -> self
    /api/accounts/users/<id>/
    /api/accounts/users/me/     [GET, PATCH] current user's profile
    """
    queryset = User.objects.all().order_by("id")
    serializer_class = UserSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        user = self.request.user

        if user.is_superuser or getattr(user, "role", None) in MANAGER_ROLES:
            qs = User.objects.filter(is_active=True).order_by("id")
            role = self.request.query_params.get("role")
            if role:
                qs = qs.filter(role=role)
            return qs

        return User.objects.filter(id=user.id)

    @action(detail=False, methods=["get", "patch"], url_path="me")
    def me(self, request):
        user = request.user

        if request.method == "GET":
            return Response(self.get_serializer(user).data)

        ser = self.get_serializer(user, data=request.data, partial=True)
        ser.is_valid(raise_exception=True)
        ser.save()
        return Response(ser.data, status=status.HTTP_200_OK)


class RegisterUserView(APIView):
    """
    POST /api/accounts/register/
      body: { username, password, first_name, last_name, email, phone?, role }
    Open endpoint; role restricted to sales_admin / sales_executive.
    """
    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request):
        ser = RegisterUserSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        user = ser.save()
        return Response(
            {"message": "Registration successful", "user": UserSerializer(user).data},
            status=status.HTTP_201_CREATED,
        )


class MyTokenObtainPairView(TokenObtainPairView):
    serializer_class = MyTokenObtainPairSerializer
