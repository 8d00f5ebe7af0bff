"""Prompt templates for the listing vision classifier."""

from typing import Optional

from pydantic import BaseModel


LISTING_EXTRACTION_INSTRUCTION = """You are an expert at reading marketplace listings for Pokemon trading card products.
You are given a full-page screenshot of one listing. Identify every product offered in it.

Respond with ONLY a JSON object in exactly this format:
{
  "mainListingPrice": "the price shown at the top of the listing, e.g. 45.00",
  "extractedDescription": "the seller's description text, verbatim",
  "location": "city and state shown on the listing",
  "hasMultipleItems": true,
  "items": [
    {
      "itemName": "specific product name",
      "set": "Pokemon set name, e.g. Evolving Skies",
      "productType": "Single | Booster Pack | Booster Box | ETB | Collection Box | Bundle | Tin | OTHER",
      "price": "price per unit as a number, e.g. 45.00",
      "quantity": 1,
      "priceUnit": "each | lot | obo",
      "language": "English",
      "notes": "condition, sealed state or other relevant details"
    }
  ]
}

Rules:
- Never return null for any field; use "" for unknown text, "0.00" for unknown prices and 1 for unknown quantity.
- productType must be one of the listed values; use "OTHER" when unsure.
- quantity must be a whole number.
- List each distinct product as its own entry in items.
- If the listing contains no trading card products, return an empty items array.
- Do not add any text before or after the JSON."""


class ListingExtractionPrompt(BaseModel):
    """User message accompanying a listing screenshot."""

    url: str
    search_term: str = ""
    title_hint: Optional[str] = None
    price_hint: Optional[str] = None

    def to_prompt(self) -> str:
        """Convert to prompt text."""
        parts = [f"Listing URL: {self.url}"]
        if self.search_term:
            parts.append(f"Found while searching for: {self.search_term}")
        if self.title_hint:
            parts.append(f"Page title: {self.title_hint}")
        if self.price_hint:
            parts.append(f"Price shown near the title: {self.price_hint}")
        parts.append("\nExtract every product in this listing as JSON.")
        return "\n".join(parts)
