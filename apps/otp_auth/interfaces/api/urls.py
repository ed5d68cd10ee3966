from django.urls import path

from .views import RegisterAccountAPI, SendOtpAPI, VerifyOtpAPI

urlpatterns = [
    path("auth/register/", RegisterAccountAPI.as_view(), name="api_auth_register"),
    path("otp/send/", SendOtpAPI.as_view(), name="api_otp_send"),
    path("otp/verify/", VerifyOtpAPI.as_view(), name="api_otp_verify"),
]

# Path layout of the hosted functions the portal front end already calls.
function_urlpatterns = [
    path("send-otp", SendOtpAPI.as_view(), name="fn_send_otp"),
    path("verify-otp", VerifyOtpAPI.as_view(), name="fn_verify_otp"),
]
