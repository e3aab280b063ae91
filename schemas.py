"""
Request and document schemas for the Marketplace API

Fields are snake_case in Python and camelCase on the wire and in MongoDB.

Collections:
- products
- orders
- purchasedProducts
- conversations
- messages
- reviews, digitalProductReviews, serviceReviews, reviewHelpful
- serviceBookings
- questions, questionReplies, questionHelpful
- advertisers, adCampaigns, adImpressions, adClicks, transactions
- users, storeSettings, vendorBalances, notifications, auditLogs, rateLimits
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ProductType = Literal["physical", "digital", "service"]
Placement = Literal["homepage", "category", "sponsored_product", "vendor_store"]


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Auth

class LoginRequest(ApiModel):
    email: str = Field(..., min_length=3)


# Products

class ProductCreate(ApiModel):
    vendor_id: str = Field(..., description="Owning vendor user id")
    name: str = Field(..., min_length=3, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    price: float = Field(..., gt=0)
    category: str = Field(..., min_length=1)
    type: ProductType = "physical"
    stock: Optional[int] = Field(None, ge=0)
    images: List[str] = Field(default_factory=list, max_length=10)
    tags: List[str] = Field(default_factory=list)


# Orders

class OrderItem(ApiModel):
    product_id: str
    name: Optional[str] = None
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    vendor_id: Optional[str] = None
    type: ProductType = "physical"
    access_duration: int = Field(0, ge=0, description="Days of access for digital items, 0 = lifetime")
    download_limit: int = Field(0, ge=0, description="Downloads allowed per purchase, 0 = unlimited")
    digital_files: List[Dict[str, Any]] = Field(default_factory=list)


class OrderCreate(ApiModel):
    user_id: str
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    items: List[OrderItem] = Field(..., min_length=1)
    total: float = Field(..., ge=0)
    shipping_address: Optional[Dict[str, Any]] = None
    payment_method: Optional[str] = None


class Order(ApiModel):
    user_id: str
    customer_id: str
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    vendor_id: Optional[str] = None
    items: List[OrderItem]
    total: float
    status: str = "pending"
    payment_status: str = "pending"
    shipping_address: Optional[Dict[str, Any]] = None
    payment_method: Optional[str] = None
    tracking_number: Optional[str] = None


class CancelOrderRequest(ApiModel):
    user_id: str


class OrderStatusUpdate(ApiModel):
    status: str
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    vendor_id: Optional[str] = None


class CompleteOrderRequest(ApiModel):
    order_id: str
    payment_reference: Optional[str] = None


class VerifyPaymentRequest(ApiModel):
    reference: Optional[str] = None


class DigitalDeliveryRequest(ApiModel):
    order_id: str
    user_id: str


class DownloadTrackRequest(ApiModel):
    purchase_id: str
    file_id: str
    user_id: str


# Reviews and ratings

class ProductReviewCreate(ApiModel):
    user_id: str
    user_name: str
    rating: int = Field(..., ge=1, le=5)
    title: str = Field(..., min_length=1)
    comment: str = Field(..., min_length=1)
    vendor_id: str
    product_name: Optional[str] = None


class ReviewCreate(ApiModel):
    product_id: str
    user_id: str
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = Field(None, max_length=200)
    comment: str = Field(..., min_length=10, max_length=2000)


class HelpfulRequest(ApiModel):
    user_id: str


class DigitalRatingCreate(ApiModel):
    rating: int = Field(..., ge=1, le=5)
    review: Optional[str] = None
    customer_id: str
    customer_name: Optional[str] = None
    order_id: Optional[str] = None


class ServiceRatingCreate(ApiModel):
    rating: int = Field(..., ge=1, le=5)
    review: Optional[str] = None
    customer_id: str


# Questions

class QuestionCreate(ApiModel):
    user_id: str
    user_name: str
    user_email: Optional[str] = None
    question: str = Field(..., min_length=1)
    vendor_id: Optional[str] = None
    product_name: Optional[str] = None


class ReplyCreate(ApiModel):
    user_id: str
    user_name: str
    message: str = Field(..., min_length=1)
    is_vendor: bool = False


# Messaging

class ConversationCreate(ApiModel):
    vendor_id: str
    vendor_name: str
    customer_id: str
    customer_name: str
    customer_email: str
    subject: str = Field(..., min_length=1)
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    order_id: Optional[str] = None


class MessageSend(ApiModel):
    conversation_id: str
    sender_id: str
    sender_name: str
    sender_role: str
    content: str


class MarkReadRequest(ApiModel):
    vendor_id: Optional[str] = None


class ConversationStatusUpdate(ApiModel):
    status: str


# Service bookings

class ScheduleRequest(ApiModel):
    vendor_id: str
    scheduled_date: str
    scheduled_time: str
    duration: Optional[int] = Field(None, ge=0, description="Minutes")
    location: Optional[str] = None
    address: Optional[str] = None
    vendor_notes: Optional[str] = None


class BookingStatusUpdate(ApiModel):
    vendor_id: str
    status: str
    notes: Optional[str] = None


class ServiceMessageCreate(ApiModel):
    sender_id: str
    sender_name: Optional[str] = None
    sender_type: Literal["customer", "vendor"]
    message: str = Field(..., min_length=1)


# Advertising

class CampaignCreate(ApiModel):
    advertiser_id: str
    campaign_name: str = Field(..., min_length=1)
    budget: float = Field(..., gt=0)
    daily_limit: Optional[float] = Field(None, ge=0)
    bid_amount: float = Field(0, ge=0)
    bid_type: Literal["CPM", "CPC"] = "CPM"
    image_url: str
    title: Optional[str] = None
    description: Optional[str] = None
    cta_text: Optional[str] = None
    destination_url: Optional[str] = None
    targeting: Optional[Dict[str, Any]] = None
    placement_type: Placement
    target_vendors: List[str] = Field(default_factory=list)
    target_categories: List[str] = Field(default_factory=list)


class AddFundsRequest(ApiModel):
    user_id: str
    amount: float = Field(..., gt=0)
    reference: str = Field(..., min_length=1)


class TrackEventRequest(ApiModel):
    campaign_id: str
    placement: str
    vendor_id: Optional[str] = None
    category: Optional[str] = None
    device_type: Optional[str] = None
    user_agent: Optional[str] = None


class CampaignAction(ApiModel):
    campaign_id: str
    action: str
    reason: Optional[str] = None


# Moderation

class ModerationDecision(ApiModel):
    status: Literal["approved", "rejected"]
    reason: Optional[str] = None


# Analytics

AnalyticsEventType = Literal["store_visit", "product_view", "add_to_cart", "checkout_started"]


class AnalyticsEvent(ApiModel):
    event_type: AnalyticsEventType
    vendor_id: str
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    user_id: Optional[str] = None
