# tests/test_identity.py
import httpx
import pytest

from medqueue.config.constants import IdentityStatus
from medqueue.core.errors import NotFoundError, UnauthorizedError, UpstreamError
from medqueue.core.identity import HttpIdentityVerifier
from tests._stubs import DOCTOR_ID, PATIENT_ID

BASE_URL = "http://identity.test"


def make_verifier(handler):
    client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return HttpIdentityVerifier(BASE_URL, client=client)


async def test_get_doctor_forwards_the_credential():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(
            200,
            json={"role": "doctor", "status": "ACTIVE", "specialty": "cardiology", "fullname": "Dr. House"},
        )

    verifier = make_verifier(handler)
    doctor = await verifier.get_doctor(DOCTOR_ID, "abc.def")
    await verifier.aclose()

    assert seen == {"path": f"/users/doctors/{DOCTOR_ID}", "auth": "Bearer abc.def"}
    assert doctor.id == DOCTOR_ID
    assert doctor.is_active
    assert doctor.specialty == "cardiology"


async def test_get_patient_without_credential():
    def handler(request):
        assert "Authorization" not in request.headers
        return httpx.Response(200, json={"role": "patient", "status": "INACTIVE"})

    patient = await make_verifier(handler).get_patient(PATIENT_ID, None)
    assert patient.status == IdentityStatus.INACTIVE
    assert not patient.is_active


async def test_list_doctors_by_specialty():
    def handler(request):
        assert request.url.params["specialty"] == "cardiology"
        return httpx.Response(
            200,
            json=[
                {"id": DOCTOR_ID, "status": "ACTIVE", "specialty": "cardiology"},
                {"id": "64b7f0c2a1e4d3b2c1a09f02", "status": "INACTIVE", "specialty": "cardiology"},
            ],
        )

    doctors = await make_verifier(handler).list_doctors_by_specialty("cardiology", "token")
    assert [d.is_active for d in doctors] == [True, False]


@pytest.mark.parametrize(
    "status_code, error",
    [
        (404, NotFoundError),
        (401, UnauthorizedError),
        (403, UnauthorizedError),
        (500, UpstreamError),
        (503, UpstreamError),
    ],
)
async def test_error_statuses(status_code, error):
    verifier = make_verifier(lambda request: httpx.Response(status_code, json={"message": "nope"}))
    with pytest.raises(error):
        await verifier.get_doctor(DOCTOR_ID, "token")


async def test_unauthorized_is_reported_as_401():
    verifier = make_verifier(lambda request: httpx.Response(401))
    with pytest.raises(UnauthorizedError) as excinfo:
        await verifier.get_patient(PATIENT_ID, "expired")
    assert excinfo.value.status_code == 401
    assert isinstance(excinfo.value, UpstreamError)


async def test_timeout():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(UpstreamError, match="timed out"):
        await make_verifier(handler).get_doctor(DOCTOR_ID, None)


async def test_connection_refused():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(UpstreamError, match="unreachable"):
        await make_verifier(handler).get_patient(PATIENT_ID, None)


@pytest.mark.parametrize(
    "payload",
    [
        {"role": "doctor", "status": "ON_HOLIDAY"},
        {"role": "doctor"},
    ],
)
async def test_malformed_payload(payload):
    verifier = make_verifier(lambda request: httpx.Response(200, json=payload))
    with pytest.raises(UpstreamError, match="Unexpected doctor payload"):
        await verifier.get_doctor(DOCTOR_ID, None)


async def test_non_json_body():
    verifier = make_verifier(lambda request: httpx.Response(200, text="<html>maintenance</html>"))
    with pytest.raises(UpstreamError, match="non-JSON"):
        await verifier.get_doctor(DOCTOR_ID, None)


async def test_doctor_list_must_be_a_list():
    verifier = make_verifier(lambda request: httpx.Response(200, json={"doctors": []}))
    with pytest.raises(UpstreamError, match="doctor list"):
        await verifier.list_doctors_by_specialty("cardiology", None)
