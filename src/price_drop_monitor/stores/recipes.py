from __future__ import annotations

from .catalog import FieldLocators, StoreRecipe
from .common import fixed_brand, leading_brand, parse_price_text, split_brand_dash_colorway


# Foot Locker and Champs share one storefront platform.
_FOOTLOCKER_LOCATORS = FieldLocators(
    name=".ProductName, .product-name h1",
    price=".ProductPrice .sr-only, .price-current",
    sale_price=".ProductPrice .sale, .price-sale",
    sku=".ProductSku, .product-sku",
    images=".ProductImages img, .product-images img",
    sizes=".SizeChart button, .sizes .size",
    in_stock=".Button--primary:not(:disabled)",
)


RECIPES: list[StoreRecipe] = [
    StoreRecipe(
        domain="snipesusa.com",
        name="Snipes USA",
        store_id="snipes-usa",
        locators=FieldLocators(
            name=".product-name h1, .pdp-product-name h1",
            price=".price .current-price, .product-price .price-current",
            sale_price=".price .sale-price, .product-price .price-sale",
            sku=".product-id, [data-product-id]",
            images=".product-images img, .pdp-images img",
            sizes=".size-selector .size-option, .sizes .size",
            in_stock=".add-to-cart:not(:disabled), .buy-now:not(:disabled)",
        ),
        price_normalizer=parse_price_text,
        title_rule=split_brand_dash_colorway,
    ),
    StoreRecipe(
        domain="nike.com",
        name="Nike",
        store_id="nike",
        locators=FieldLocators(
            name='[data-test="product-title"], .pdp_product_title h1',
            price='.product-price .current-price, [data-test="product-price"]',
            sale_price=".product-price .sale-price",
            sku='.product-style, [data-test="product-sub-title"]',
            images='.product-images img, [data-test="hero-image"] img',
            sizes=".size-selector button, .size-chart button",
            in_stock=".add-to-cart:not(:disabled)",
        ),
        title_rule=fixed_brand("Nike"),
    ),
    StoreRecipe(
        domain="shoepalace.com",
        name="Shoe Palace",
        store_id="shoe-palace",
        locators=FieldLocators(
            name=".product-title h1, .product-name",
            price=".price-current, .product-price .current",
            sale_price=".price-sale, .product-price .sale",
            sku=".product-sku, [data-sku]",
            images=".product-gallery img, .product-images img",
            sizes=".size-options .size, .sizes button",
            in_stock=".add-to-cart:not(:disabled)",
        ),
        title_rule=leading_brand,
    ),
    StoreRecipe(
        domain="footlocker.com",
        name="Foot Locker",
        store_id="foot-locker",
        locators=_FOOTLOCKER_LOCATORS,
        title_rule=split_brand_dash_colorway,
    ),
    StoreRecipe(
        domain="champssports.com",
        name="Champs Sports",
        store_id="champs-sports",
        locators=_FOOTLOCKER_LOCATORS,
        title_rule=split_brand_dash_colorway,
    ),
    StoreRecipe(
        domain="hibbett.com",
        name="Hibbett Sports",
        store_id="hibbett",
        locators=FieldLocators(
            name=".product-title, .pdp-product-title h1",
            price=".price-current, .product-price .current",
            sale_price=".price-sale, .product-price .sale",
            sku=".product-id, .sku",
            images=".product-images img, .gallery img",
            sizes=".size-selector .size, .sizes button",
            in_stock=".add-to-bag:not(:disabled)",
        ),
        title_rule=leading_brand,
    ),
    StoreRecipe(
        domain="adidas.com",
        name="adidas",
        store_id="adidas",
        locators=FieldLocators(
            name='h1[data-auto-id="product-title"], .product-title h1',
            price='[data-auto-id="gl-price-item"], .gl-price-item',
            sale_price='.gl-price-item--sale, [data-auto-id="sale-price"]',
            sku='[data-auto-id="product-code"], .product-code',
            images='[data-auto-id="image-viewer"] img, .product-images img',
            sizes='[data-auto-id="size-selector"] button, .size-selector button',
            in_stock='[data-auto-id="add-to-bag"]:not(:disabled)',
        ),
        title_rule=fixed_brand("Adidas"),
    ),
]
