from rest_framework import viewsets

from users.models import User
from users.permissions import IsAdminOrReadOnly

from .filters import StudentFilter
from .models import Student
from .serializers import StudentSerializer


class StudentViewSet(viewsets.ModelViewSet):
    serializer_class = StudentSerializer
    permission_classes = [IsAdminOrReadOnly]
    filterset_class = StudentFilter

    def get_queryset(self):
        qs = Student.objects.select_related("guardian").all()
        user = self.request.user
        # Guardians only see their own students; staff sees everyone.
        if getattr(user, "role", None) == User.ROLE_PARENT:
            return qs.filter(guardian=user)
        return qs
