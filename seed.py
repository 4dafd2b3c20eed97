import logging

from pymongo.database import Database

from database import create_document
from schemas import Category, Product

logger = logging.getLogger(__name__)

SAMPLE_CATEGORIES = ["Skis", "Boots", "Helmets"]

SAMPLE_PRODUCTS = [
    {
        "title": "Rossignol Experience 82",
        "price": 549.0,
        "category": "Skis",
        "image_url": "https://images.unsplash.com/photo-1551524559-8af4e6624178?q=80&w=1200&auto=format&fit=crop",
        "stock": 8,
        "gender": "men",
        "length": 176,
        "brand": "Rossignol",
        "color": "Black",
    },
    {
        "title": "Atomic Cloud Q9",
        "price": 499.0,
        "category": "Skis",
        "image_url": "https://images.unsplash.com/photo-1565992441121-4367c2967103?q=80&w=1200&auto=format&fit=crop",
        "stock": 5,
        "gender": "woman",
        "length": 156,
        "brand": "Atomic",
        "color": "White",
    },
    {
        "title": "Salomon S/Pro 100",
        "price": 379.99,
        "category": "Boots",
        "image_url": "https://images.unsplash.com/photo-1516683037151-9a17603a8dc7?q=80&w=1200&auto=format&fit=crop",
        "stock": 12,
        "gender": "men",
        "size": "27.5",
        "brand": "Salomon",
        "color": "Blue",
    },
    {
        "title": "Smith Vantage MIPS",
        "price": 229.5,
        "category": "Helmets",
        "image_url": "https://images.unsplash.com/photo-1605540436563-5bca919ae766?q=80&w=1200&auto=format&fit=crop",
        "stock": 20,
        "brand": "Smith",
        "color": "Matte Black",
    },
]


def seed_catalog(database: Database) -> int:
    """Insert sample categories and products when the catalog is empty."""
    if database["product"].count_documents({}) > 0:
        return 0

    category_ids = {}
    for name in SAMPLE_CATEGORIES:
        existing = database["category"].find_one({"name": name})
        if existing:
            category_ids[name] = str(existing["_id"])
        else:
            category_ids[name] = create_document("category", Category(name=name), database=database)

    for sample in SAMPLE_PRODUCTS:
        data = dict(sample, category=category_ids[sample["category"]])
        create_document("product", Product(**data), database=database)

    logger.info("Seeded %d categories and %d products", len(category_ids), len(SAMPLE_PRODUCTS))
    return len(SAMPLE_PRODUCTS)
