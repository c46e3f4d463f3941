from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Optional, List


class QuoteLineItem(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    description: Optional[str] = None
    quantity: Optional[Any] = None
    unit: Optional[str] = None
    unit_price: Optional[Any] = Field(default=None, alias="unitPrice")
    total: Optional[Any] = None


class RawExtractionRecord(BaseModel):
    """
    One extraction result per uploaded file.
    Numeric fields are kept exactly as extracted; comparison resolves them.
    Unknown keys from the extractor are passed through untouched.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    filename: str = Field(min_length=1)
    vendor: Optional[str] = None
    items: Optional[List[QuoteLineItem]] = None
    subtotal: Optional[Any] = None
    tax: Optional[Any] = None
    fees: Optional[Any] = None
    total: Optional[Any] = None
    currency: Optional[str] = None
    error: Optional[str] = None


class ComparableQuote(BaseModel):
    model_config = ConfigDict(frozen=True)

    filename: str
    vendor: str
    total: float
    is_valid: bool


class AnnotatedQuote(RawExtractionRecord):
    is_best_deal: bool = Field(default=False, alias="isBestDeal")
    savings: float = 0.0


class BestDeal(BaseModel):
    filename: str
    vendor: str
    total: float
    savings: float


class PriceComparison(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    lowest_price: float = Field(default=0.0, alias="lowestPrice")
    highest_price: float = Field(default=0.0, alias="highestPrice")
    average_price: float = Field(default=0.0, alias="averagePrice")
    price_range: float = Field(default=0.0, alias="priceRange")


class ComparisonResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    quotes: List[AnnotatedQuote]
    comparison: PriceComparison = Field(default_factory=PriceComparison)
    best_deal: Optional[BestDeal] = Field(default=None, alias="bestDeal")


class CompareRequest(BaseModel):
    quotes: List[RawExtractionRecord]


class CompareResponse(BaseModel):
    success: bool = True
    data: ComparisonResult
