"""Exchange-rate router: the USD->INR rate a new invoice would be frozen with."""
from fastapi import APIRouter, Depends

from invoice_desk.config.observability import trace_operation
from invoice_desk.services.exchange_rate import ExchangeRateProvider, get_exchange_rate_provider
from invoice_desk.utils.api_shapes import success

router = APIRouter()


@router.get("/exchange-rate")
async def get_exchange_rate(rates: ExchangeRateProvider = Depends(get_exchange_rate_provider)):
    with trace_operation("exchange_rate_quote"):
        quote = rates.quote()
        return success({
            "base": "USD",
            "quote": "INR",
            "rate": float(quote.rate),
            "source": quote.source,
            "fetched_at": quote.fetched_at.isoformat(),
        })
