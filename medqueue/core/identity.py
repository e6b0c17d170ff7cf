"""
Identity service client.

The clinic directory (doctors, patients, their status and specialty) lives
in a separate service. The engines only depend on the `IdentityVerifier`
protocol; `HttpIdentityVerifier` is the production implementation.
"""
import logging
from typing import List, Optional, Protocol

import httpx
from pydantic import BaseModel, ValidationError as PydanticValidationError

from medqueue.config.constants import IdentityStatus
from medqueue.core.errors import NotFoundError, UnauthorizedError, UpstreamError

logger = logging.getLogger(__name__)


class DoctorIdentity(BaseModel):
    id: str
    role: str = "doctor"
    status: IdentityStatus
    specialty: Optional[str] = None
    fullname: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == IdentityStatus.ACTIVE


class PatientIdentity(BaseModel):
    id: str
    role: str = "patient"
    status: IdentityStatus
    fullname: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == IdentityStatus.ACTIVE


class IdentityVerifier(Protocol):
    async def get_doctor(self, doctor_id: str, credential: Optional[str]) -> DoctorIdentity: ...

    async def get_patient(self, patient_id: str, credential: Optional[str]) -> PatientIdentity: ...

    async def list_doctors_by_specialty(
        self, specialty: str, credential: Optional[str]
    ) -> List[DoctorIdentity]: ...


class HttpIdentityVerifier:
    """httpx-backed client for the identity service."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, credential: Optional[str], what: str, params=None):
        headers = {"Authorization": f"Bearer {credential}"} if credential else {}
        try:
            response = await self._client.get(path, headers=headers, params=params)
        except httpx.TimeoutException as e:
            logger.error(f"Identity service timed out fetching {what}: {e}")
            raise UpstreamError(f"Identity service timed out while verifying the {what}")
        except httpx.HTTPError as e:
            logger.error(f"Identity service unreachable fetching {what}: {e}", exc_info=True)
            raise UpstreamError(f"Identity service unreachable while verifying the {what}")

        if response.status_code == 404:
            raise NotFoundError(f"{what.capitalize()} not found")
        if response.status_code in (401, 403):
            raise UnauthorizedError(f"Identity service rejected the credential for the {what}")
        if response.is_error:
            logger.error(
                f"Identity service returned {response.status_code} for {what}: {response.text[:200]}"
            )
            raise UpstreamError(f"Identity service error while verifying the {what}")
        try:
            return response.json()
        except ValueError:
            raise UpstreamError(f"Identity service returned a non-JSON payload for the {what}")

    async def get_doctor(self, doctor_id: str, credential: Optional[str]) -> DoctorIdentity:
        data = await self._get(f"/users/doctors/{doctor_id}", credential, "doctor")
        try:
            return DoctorIdentity.model_validate({"id": doctor_id, **data})
        except PydanticValidationError as e:
            raise UpstreamError(f"Unexpected doctor payload from identity service: {e.errors()[0]['msg']}")

    async def get_patient(self, patient_id: str, credential: Optional[str]) -> PatientIdentity:
        data = await self._get(f"/users/patients/{patient_id}", credential, "patient")
        try:
            return PatientIdentity.model_validate({"id": patient_id, **data})
        except PydanticValidationError as e:
            raise UpstreamError(f"Unexpected patient payload from identity service: {e.errors()[0]['msg']}")

    async def list_doctors_by_specialty(
        self, specialty: str, credential: Optional[str]
    ) -> List[DoctorIdentity]:
        data = await self._get(
            "/users/doctors", credential, "doctor list", params={"specialty": specialty}
        )
        if not isinstance(data, list):
            raise UpstreamError("Unexpected doctor list payload from identity service")
        try:
            return [DoctorIdentity.model_validate(item) for item in data]
        except PydanticValidationError as e:
            raise UpstreamError(f"Unexpected doctor list payload from identity service: {e.errors()[0]['msg']}")
