from rest_framework.routers import DefaultRouter

from .views import SchoolYearViewSet, TrimesterViewSet

router = DefaultRouter()
router.register(r"school-years", SchoolYearViewSet, basename="schoolyear")
router.register(r"trimesters", TrimesterViewSet, basename="trimester")

urlpatterns = router.urls
