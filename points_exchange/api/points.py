"""Points endpoints for the end-user app."""

from typing import List, Optional

from points_exchange.api.http import UNEXPECTED_PAYLOAD_MESSAGE, ApiClient, decode
from points_exchange.exceptions import ServiceError
from points_exchange.models import ExchangeRequest, PointsRecord, RecordFilter, TimeRange


class PointsApi:
    def __init__(self, client: ApiClient):
        self.client = client

    async def get_balance(self) -> int:
        data = await self.client.get("/api/points/balance")
        try:
            return max(0, int(data or 0))
        except (TypeError, ValueError):
            raise ServiceError(UNEXPECTED_PAYLOAD_MESSAGE, detail={"endpoint": "/api/points/balance"})

    async def get_records(
        self,
        record_type: RecordFilter = "all",
        time_range: TimeRange = "30days",
    ) -> List[PointsRecord]:
        path = "/api/points/records"
        data = await self.client.get(path, params={"type": record_type, "timeRange": time_range})
        return decode(path, data, lambda items: [PointsRecord.model_validate(item) for item in items or []])

    async def send_sms_code(self) -> Optional[str]:
        """Ask the backend to text a one-time code; development backends echo it."""
        data = await self.client.post("/api/points/send-sms-code")
        return str(data) if data is not None else None

    async def exchange(self, product_id: str, quantity: int, verification_code: str) -> None:
        request = ExchangeRequest(
            product_id=product_id,
            quantity=quantity,
            verification_code=verification_code,
        )
        await self.client.post("/api/points/exchange", json_body=request.to_payload())
