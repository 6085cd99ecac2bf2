"""
Candidate field names for resolving canonical attributes from export rows.

Each tuple is evaluated in order and the first non-empty value wins. The
exports for cart-abandon, charged and product-view events, and the delta
files written by this pipeline, all use different column names for the same
attribute, so every column seen in any of them is listed here.
"""

IDENTITY_FIELD = "profile.identity"

PRODUCT_ID_FIELDS = (
    "eventProps.Product ID",
    "eventProps.Items|product_id",
    "eventProps.Items|product id",
    "eventProps.product_id",
    "eventProps.ID",
)

PRICE_FIELDS = (
    "eventProps.price",
    "eventProps.Price",
    "eventProps.Items|price",
    "eventProps.Items|unit_price",
)

IMAGE_URL_FIELDS = (
    "eventProps.image_url",
    "eventProps.Image_url",
    "eventProps.Image Url",
    "eventProps.Items|image_url",
    "eventProps.Items|img_url",
)

TITLE_FIELDS = (
    "eventProps.item_name",
    "eventProps.Items|item_name",
    "eventProps.Items|title",
    "eventProps.Items|item_title",
    "eventProps.Title",
    "eventProps.title",
)

EMAIL_FIELDS = (
    "profile.email",
    "eventProps.email",
    "eventProps.customer email",
)

PHONE_FIELDS = (
    "profile.phone",
    "eventProps.phone",
    "eventProps.customer phone",
)

VIEW_COUNT_FIELDS = ("eventProps.view_count",)

# Serialized JSON list of purchased sub-items on charged events
NESTED_ITEMS_FIELD = "eventProps.Items"

SUB_ITEM_PRODUCT_ID_FIELDS = ("product_id", "product id", "Product ID", "id")
SUB_ITEM_PRICE_FIELDS = ("price", "unit_price")
SUB_ITEM_TITLE_FIELDS = ("item_name", "title", "item_title")
