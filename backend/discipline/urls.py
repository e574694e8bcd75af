from rest_framework.routers import DefaultRouter

from .views import AlertSettingViewSet, AlertViewSet, CaseViewSet, FollowUpViewSet, InfractionViewSet

router = DefaultRouter()
router.register(r"discipline/infractions", InfractionViewSet, basename="discipline-infraction")
router.register(r"discipline/follow-ups", FollowUpViewSet, basename="discipline-follow-up")
router.register(r"discipline/cases", CaseViewSet, basename="discipline-case")
router.register(r"discipline/alerts", AlertViewSet, basename="discipline-alert")
router.register(r"discipline/alert-settings", AlertSettingViewSet, basename="discipline-alert-setting")

urlpatterns = router.urls
