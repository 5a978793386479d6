"""
Cart API Endpoints.

Endpoints for reading and editing the caller's cart and running the
pre-checkout validation.
"""

from fastapi import APIRouter, Depends, Response

from api.dependencies import CurrentUser, current_user, get_cart_service
from api.models import (
    AddToCartRequest,
    CartCountResponse,
    CartItemResponse,
    CartResponse,
    CartValidationResponse,
    UpdateQuantityRequest,
)
from services.cart_service import CartService

router = APIRouter()


@router.get(
    "/cart",
    response_model=CartResponse,
    summary="Get Cart",
    description="Cart lines priced for the caller's buyer tier against current product data.",
)
async def get_cart(
    user: CurrentUser = Depends(current_user),
    carts: CartService = Depends(get_cart_service),
):
    """
    Get the caller's cart.

    Lines whose product was removed, deactivated or has no price stay in the
    cart but are excluded from the totals and listed in `warnings`.
    """
    cart = await carts.get_cart(user.user_id, user.buyer_tier)
    return CartResponse.from_cart(cart)


@router.get("/cart/count", response_model=CartCountResponse, summary="Cart Item Count")
async def get_cart_count(
    user: CurrentUser = Depends(current_user),
    carts: CartService = Depends(get_cart_service),
):
    return CartCountResponse(count=await carts.get_cart_item_count(user.user_id))


@router.post(
    "/cart/items",
    response_model=CartItemResponse,
    status_code=201,
    summary="Add To Cart",
    description="Add a product, incrementing the quantity if it is already in the cart.",
)
async def add_to_cart(
    request: AddToCartRequest,
    user: CurrentUser = Depends(current_user),
    carts: CartService = Depends(get_cart_service),
):
    """
    **Example request:**
    ```json
    {"product_id": "prod-bleach-1l", "quantity": 2}
    ```

    Stock is not checked here; `GET /cart/validate` and checkout do that.
    """
    item = await carts.add_to_cart(user.user_id, request.product_id, request.quantity)
    return CartItemResponse.from_item(item)


@router.patch(
    "/cart/items/{product_id}",
    summary="Update Quantity",
    description="Set the quantity of a cart line. A quantity of 0 removes the line.",
)
async def update_quantity(
    product_id: str,
    request: UpdateQuantityRequest,
    user: CurrentUser = Depends(current_user),
    carts: CartService = Depends(get_cart_service),
):
    item = await carts.update_quantity(user.user_id, product_id, request.quantity)
    if item is None:
        return Response(status_code=204)
    return CartItemResponse.from_item(item)


@router.delete("/cart/items/{product_id}", status_code=204, summary="Remove From Cart")
async def remove_from_cart(
    product_id: str,
    user: CurrentUser = Depends(current_user),
    carts: CartService = Depends(get_cart_service),
):
    await carts.remove_from_cart(user.user_id, product_id)
    return Response(status_code=204)


@router.delete("/cart", status_code=204, summary="Clear Cart")
async def clear_cart(
    user: CurrentUser = Depends(current_user),
    carts: CartService = Depends(get_cart_service),
):
    await carts.clear_cart(user.user_id)
    return Response(status_code=204)


@router.get(
    "/cart/validate",
    response_model=CartValidationResponse,
    summary="Validate Cart",
    description="Re-check every line against current stock and pricing before checkout.",
)
async def validate_cart(
    user: CurrentUser = Depends(current_user),
    carts: CartService = Depends(get_cart_service),
):
    """
    **Invalid cart response:**
    ```json
    {
      "is_valid": false,
      "errors": ["Only 3 units of Bleach 1L available"],
      "items": [{"product_id": "prod-bleach-1l", "quantity": 3, "added_at": "..."}]
    }
    ```
    Clamped quantities are reported, not saved.
    """
    validation = await carts.validate_cart(user.user_id, user.buyer_tier)
    return CartValidationResponse.from_validation(validation)
