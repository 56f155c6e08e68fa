"""Canonical wardrobe taxonomy.

Categories and sub-categories are the lowercase keys stored on inventory
items. Colors are the fixed palette offered to users; detected colors are
mapped onto it by name.
"""

CATEGORIES: dict[str, list[str]] = {
    "tops": ["t-shirt", "shirt", "blouse", "sweater", "hoodie", "tank-top", "polo", "crop-top"],
    "bottoms": ["jeans", "pants", "shorts", "skirt", "leggings", "sweatpants", "chinos"],
    "dresses": ["casual-dress", "formal-dress", "maxi-dress", "mini-dress", "midi-dress"],
    "outerwear": ["jacket", "coat", "blazer", "cardigan", "vest", "parka", "bomber"],
    "shoes": ["sneakers", "boots", "heels", "sandals", "loafers", "flats", "oxford"],
    "accessories": ["bag", "hat", "scarf", "belt", "jewelry", "watch", "sunglasses"],
}

DEFAULT_CATEGORY = "tops"

COLORS: list[dict[str, str]] = [
    {"name": "Black", "hex": "#000000"},
    {"name": "White", "hex": "#FFFFFF"},
    {"name": "Gray", "hex": "#808080"},
    {"name": "Navy", "hex": "#000080"},
    {"name": "Blue", "hex": "#0000FF"},
    {"name": "Light Blue", "hex": "#ADD8E6"},
    {"name": "Red", "hex": "#FF0000"},
    {"name": "Burgundy", "hex": "#800020"},
    {"name": "Pink", "hex": "#FFC0CB"},
    {"name": "Orange", "hex": "#FFA500"},
    {"name": "Yellow", "hex": "#FFFF00"},
    {"name": "Green", "hex": "#008000"},
    {"name": "Olive", "hex": "#808000"},
    {"name": "Brown", "hex": "#A52A2A"},
    {"name": "Tan", "hex": "#D2B48C"},
    {"name": "Cream", "hex": "#FFFDD0"},
    {"name": "Purple", "hex": "#800080"},
    {"name": "Lavender", "hex": "#E6E6FA"},
    {"name": "Teal", "hex": "#008080"},
    {"name": "Coral", "hex": "#FF7F50"},
    {"name": "Beige", "hex": "#F5F5DC"},
]

# lowercase name -> palette name
COLOR_NAMES: dict[str, str] = {color["name"].lower(): color["name"] for color in COLORS}

# Detector vocabulary (Title Case) -> taxonomy key.
# Activewear has no bucket of its own yet.
DETECTED_CATEGORY_MAP: dict[str, str] = {
    "Tops": "tops",
    "Bottoms": "bottoms",
    "Outerwear": "outerwear",
    "Shoes": "shoes",
    "Accessories": "accessories",
    "Dresses": "dresses",
    "Activewear": "tops",
}


__all__ = [
    "CATEGORIES",
    "COLORS",
    "COLOR_NAMES",
    "DEFAULT_CATEGORY",
    "DETECTED_CATEGORY_MAP",
]
