import json
import logging
from typing import Optional, Union

from fastapi import FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from .config import ConsumptionMode, Settings, get_settings
from .errors import AddressNotAuthorized, InvalidCredential, NotFound, StoreError
from .models import AuthContext, ConsumeResult, LedgerEntry, UnitConsumeResult, WebhookResponse
from .report import REPORT_TABLES
from .service import LedgerService

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[LedgerService] = None,
    root_path: str = "",
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level.upper())
    ledger_service = service or LedgerService.from_settings(settings)

    app = FastAPI(
        title="Pix Credit Ledger API",
        description="Accrues Pix payment notifications per txid and lets activation devices consume the credit once",
        version="1.0.0",
        root_path=root_path,
    )
    app.state.ledger_service = ledger_service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        max_age=86400,
    )

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "pix-credit-ledger"}

    @app.post("/webhook", response_model=WebhookResponse, tags=["Webhook"])
    async def webhook(request: Request):
        auth = AuthContext(
            source_address=request.headers.get(settings.client_ip_header)
            or (request.client.host if request.client else None),
            token=request.query_params.get("hmac"),
            test_value=request.query_params.get(settings.hide_param),
        )
        try:
            ledger_service.authenticate(auth)
        except AddressNotAuthorized as e:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
        except InvalidCredential as e:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))

        try:
            payload = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body must be JSON")

        result = ledger_service.apply_batch(payload)
        if result.failed and not (result.applied or result.duplicates):
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content=WebhookResponse(
                    success=False, message="Ledger unavailable, retry later", result=result,
                ).model_dump(mode="json"),
            )
        return WebhookResponse(success=True, message="Notifications received", result=result)

    @app.get(
        "/consulta-recebimento",
        response_model=Union[ConsumeResult, UnitConsumeResult],
        tags=["Consumption"],
    )
    def consume(idmaq: str = Query(..., min_length=1, description="Device txid")):
        try:
            if ledger_service.consumption_mode == ConsumptionMode.UNITS:
                return ledger_service.consume_units(idmaq)
            return ledger_service.consume(idmaq)
        except NotFound:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="ID Not Found.")
        except StoreError as e:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    @app.get("/entries/{txid}", response_model=LedgerEntry, tags=["Consumption"])
    def get_entry(txid: str):
        try:
            return ledger_service.get_entry(txid)
        except NotFound:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="ID Not Found.")

    @app.get("/consulta-database", response_class=PlainTextResponse, tags=["Reports"])
    def report(db: str = Query(...)):
        if db not in REPORT_TABLES:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Table not available for reporting")
        return f"Table {db}:\n\n{ledger_service.render_table(db)}"

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
