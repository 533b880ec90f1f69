"""
Receipt Text Parser

Turns raw OCR text from a Turkish/English retail receipt into a
ReceiptDraft: total, currency, date, merchant, category and line items.

DESIGN DECISION: Keyword and pattern matching, no ML. The parser runs on
every scan for free; anything it gets wrong is either caught by the
confidence heuristics (and re-read by the vision AI) or corrected by the
user on the draft screen.

Number formats seen on receipts:
    1.599,90   Turkish thousands + decimal comma
    1599,90    decimal comma
    1,599      thousands comma
    15.99      decimal point
    1.599      thousands point
"""

import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

from pocketledger.models.receipt import DraftSource, ReceiptDraft, ReceiptItemDraft


PLACEHOLDER_DESCRIPTION = "Fiş Taraması"
DEFAULT_CATEGORY = "Diğer"

_LETTERS = "A-Za-zÇĞİÖŞÜçğıöşü"
_UPPER = "A-ZÇĞİÖŞÜ"

MAX_TOTAL = Decimal("1000000")
MAX_FALLBACK_TOTAL = Decimal("100000")
MAX_ITEM_PRICE = Decimal("50000")
MIN_RECEIPT_YEAR = 2020


# =============================================================================
# PATTERN TABLES
# =============================================================================

CATEGORY_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"market|migros|\bbim\b|a101|\bşok\b|carrefour|macro|\bfile\b|kipa|\bmetro\b|grocery", re.I), "Market"),
    (re.compile(r"eczane|pharmacy|ilaç|medicine", re.I), "Eczane"),
    (re.compile(r"restoran|restaurant|cafe|kafe|kahve|starbucks|burger|pizza|döner|kebab|lokanta", re.I), "Restoran"),
    (re.compile(r"mcdonald|burger king|kfc|popeyes|subway|domino|little caesars", re.I), "Fast Food"),
    (re.compile(r"benzin|akaryakıt|petrol|opet|shell|\bbp\b|totalenergies|fuel|station|istasyon", re.I), "Yakıt"),
    (re.compile(r"giyim|clothing|moda|fashion|zara|h&m|lcw|koton|mango|defacto", re.I), "Giyim"),
    (re.compile(r"elektrik|su fatura|doğalgaz|natural gas|water|electricity|igdaş|tedaş", re.I), "Faturalar"),
    (re.compile(r"turkcell|vodafone|türk telekom|internet|telefon|mobile|gsm", re.I), "Telefon"),
    (re.compile(r"sinema|cinema|bilet|ticket|konser|concert|eğlence", re.I), "Eğlence"),
    (re.compile(r"hastane|hospital|klinik|clinic|sağlık|health|doktor|doctor", re.I), "Sağlık"),
    (re.compile(r"eğitim|education|okul|school|kurs|course|kitap|book", re.I), "Eğitim"),
    (re.compile(r"trendyol|hepsiburada|amazon|\bn11\b|gittigidiyor|online", re.I), "Online Alışveriş"),
]

CURRENCY_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"₺|\btl\b|\btry\b|türk liras", re.I), "TRY"),
    (re.compile(r"\$|\busd\b|dolar|dollar", re.I), "USD"),
    (re.compile(r"€|\beur\b|euro", re.I), "EUR"),
]

# Ordered: the most specific "total" wording wins
AMOUNT_PATTERNS: list[re.Pattern] = [
    re.compile(r"dahil\s*tutar\s*[:\s]*([0-9][0-9.,]*)", re.I),
    re.compile(r"toplam\s*tutar\s*[:\s]*([0-9][0-9.,]*)", re.I),
    re.compile(r"toplam\s*[:\s]*([0-9][0-9.,]*)", re.I),
    re.compile(r"genel\s*toplam\s*[:\s]*([0-9][0-9.,]*)", re.I),
    re.compile(r"ödenecek\s*tutar\s*[:\s]*([0-9][0-9.,]*)", re.I),
    re.compile(r"total\s*[:\s]*([0-9][0-9.,]*)", re.I),
    re.compile(r"grand\s*total\s*[:\s]*([0-9][0-9.,]*)", re.I),
    re.compile(r"amount\s*[:\s]*([0-9][0-9.,]*)", re.I),
    re.compile(r"tutar\s*[:\s]*([0-9][0-9.,]*)", re.I),
    re.compile(r"₺\s*([0-9][0-9.,]*)"),
    re.compile(r"([0-9][0-9.,]*)\s*₺"),
    re.compile(r"([0-9][0-9.,]*)\s*tl\b", re.I),
]

_PRICE_LIKE = re.compile(r"\b(\d{1,3}(?:[.,]\d{3})*[.,]\d{2})\b")

DATE_PATTERNS: list[re.Pattern] = [
    re.compile(r"(\d{2})[./-](\d{2})[./-](\d{4})"),  # DD/MM/YYYY
    re.compile(r"(\d{4})[./-](\d{2})[./-](\d{2})"),  # YYYY-MM-DD
    re.compile(r"(\d{2})[./-](\d{2})[./-](\d{2})"),  # DD/MM/YY
]

KNOWN_STORE_PATTERNS: list[re.Pattern] = [
    re.compile(p, re.I) for p in (
        r"file\s*market", r"migros", r"bim\b", r"a101", r"şok\s*market",
        r"carrefour", r"macro\s*center", r"metro\b", r"gratis", r"watsons",
        r"rossmann", r"koçtaş", r"bauhaus", r"teknosa", r"media\s*markt",
        r"eczane", r"starbucks", r"kahve\s*dünyası",
    )
]

COMPANY_INDICATORS: list[re.Pattern] = [
    re.compile(rf"([{_UPPER}][{_LETTERS}\s]+)\s*(?:A\.?Ş\.?|LTD|ŞTİ|ŞİRKETİ|MARKET|MAĞAZA)", re.I),
    re.compile(rf"([{_UPPER}][{_LETTERS}\s]+)\s*MAĞ[AR]ZACILIK", re.I),
]

ITEM_SKIP_PATTERNS: list[re.Pattern] = [
    re.compile(r"toplam|tutar|kdv|vergi|fatura|tarih|saat|kasa|no:|fiş|teşekkür|nakit|kredi|banka|visa|master", re.I),
    re.compile(r"^\d{2}[./-]\d{2}[./-]\d{2,4}"),
    re.compile(r"mahalle|cadde|sokak|istanbul|ankara|izmir|tel:|faks:|e-?mail", re.I),
    re.compile(r"^[*\-=_#]+$"),
    re.compile(r"vergi\s*dairesi|vkn|tckn", re.I),
]

ITEM_PRICE_PATTERNS: list[re.Pattern] = [
    re.compile(r"[£₺*]?\s*(\d{1,3}(?:[.,]\d{3})*[.,]\d{2})\s*$"),
    re.compile(r"\s+(\d{1,3}(?:[.,]\d{3})*[.,]\d{2})\s*[₺TL]*\s*$", re.I),
    re.compile(r"\s+(\d+[.,]\d{2})\s*$"),
]

_EXPLICIT_QTY = re.compile(r"\b(\d{1,2})\s*[xX*]\s*(\d+[.,]?\d*)\b")
_ADET_QTY = re.compile(r"\b(?:adet|adt|ad)\s*[:\s]*(\d{1,2})\b", re.I)
_TOTAL_LINE_NAME = re.compile(r"^(ara\s*)?toplam|^genel|^ödenecek|^kalan|^para\s*üstü", re.I)

ITEM_CATEGORY_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"süt|peynir|yoğurt|tereyağ|kaymak|\blor\b", re.I), "Süt Ürünleri"),
    (re.compile(r"ekmek|simit|poğaça|börek|pasta|\bkek\b", re.I), "Fırın Ürünleri"),
    (re.compile(r"\bet\b|tavuk|balık|köfte|sucuk|salam|sosis|pastırma", re.I), "Et & Şarküteri"),
    (re.compile(r"meyve|elma|portakal|\bmuz\b|domates|biber|salatalık|patates|soğan", re.I), "Meyve & Sebze"),
    (re.compile(r"\bsu\b|kola|gazoz|meyve suyu|ayran|bira|şarap|rakı", re.I), "İçecekler"),
    (re.compile(r"çikolata|şeker|gofret|bisküvi|cips|kuruyemiş", re.I), "Atıştırmalık"),
    (re.compile(r"makarna|bulgur|pirinç|\bun\b|\btuz\b|baharat|\byağ\b", re.I), "Temel Gıda"),
    (re.compile(r"kahve|\bçay\b|nescafe", re.I), "Sıcak İçecekler"),
    (re.compile(r"deterjan|yumuşatıcı|çamaşır|bulaşık", re.I), "Temizlik"),
    (re.compile(r"şampuan|sabun|\bdiş|deodorant|krem|losyon", re.I), "Kişisel Bakım"),
    (re.compile(r"tuvalet|peçete|mendil|poşet", re.I), "Kağıt Ürünleri"),
]

BRAND_PATTERNS: list[re.Pattern] = [
    re.compile(r"sütaş|pınar|eker|danone|activia|içim", re.I),
    re.compile(r"coca[\s-]?cola|pepsi|fanta|sprite|schweppes", re.I),
    re.compile(r"\beti\b|ülker|tadım|peyman|çerezza|doritos|lays|ruffles", re.I),
    re.compile(r"ariel|persil|\bomo\b|\bace\b|domestos|fairy|pril|\bcif\b", re.I),
    re.compile(r"dove|nivea|rexona|head.*shoulders|pantene|elseve|\bclear\b", re.I),
]


# =============================================================================
# FIELD EXTRACTORS
# =============================================================================

def parse_amount(raw: str) -> Optional[Decimal]:
    """Parse a receipt number in Turkish or English notation."""
    cleaned = raw.strip()

    if "." in cleaned and "," in cleaned:
        cleaned = cleaned.replace(".", "").replace(",", ".")
    elif "," in cleaned:
        if re.search(r",\d{2}$", cleaned):
            cleaned = cleaned.replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif "." in cleaned and not re.search(r"\.\d{2}$", cleaned):
        cleaned = cleaned.replace(".", "")

    try:
        return Decimal(cleaned).quantize(Decimal("0.01"))
    except InvalidOperation:
        return None


def extract_amount(text: str) -> Decimal:
    """Receipt total, or 0 when nothing plausible was found."""
    for pattern in AMOUNT_PATTERNS:
        match = pattern.search(text)
        if match and match.group(1):
            amount = parse_amount(match.group(1))
            if amount is not None and 0 < amount < MAX_TOTAL:
                return amount

    # Fallback: largest price-looking number
    best = Decimal("0")
    for raw in _PRICE_LIKE.findall(text):
        amount = parse_amount(raw)
        if amount is not None and best < amount < MAX_FALLBACK_TOTAL:
            best = amount
    return best


def extract_category(text: str) -> str:
    for pattern, category in CATEGORY_PATTERNS:
        if pattern.search(text):
            return category
    return DEFAULT_CATEGORY


def extract_currency(text: str, default: str = "TRY") -> str:
    for pattern, currency in CURRENCY_PATTERNS:
        if pattern.search(text):
            return currency
    return default


def extract_date(text: str, max_year: Optional[int] = None) -> Optional[date]:
    """First plausible receipt date in the text."""
    max_year = max_year or date.today().year + 1

    for pattern in DATE_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue

        first, second, third = match.groups()
        if len(first) == 4:
            year, month, day = first, second, third
        elif len(third) == 4:
            day, month, year = first, second, third
        else:
            day, month, year = first, second, f"20{third}"

        if not MIN_RECEIPT_YEAR <= int(year) <= max_year:
            continue
        try:
            return date(int(year), int(month), int(day))
        except ValueError:
            continue

    return None


def extract_description(text: str) -> str:
    """Merchant name, or the placeholder when none is found."""
    # 1. Known store names anywhere in the text
    for pattern in KNOWN_STORE_PATTERNS:
        match = pattern.search(text)
        if match:
            name = match.group(0)
            return name[0].upper() + name[1:].lower()

    # 2. Company suffixes (A.Ş., LTD, ŞTİ ...)
    for pattern in COMPANY_INDICATORS:
        match = pattern.search(text)
        if match and match.group(1):
            name = match.group(1).strip()
            if 3 <= len(name) <= 40:
                return name

    # 3. A clean line near the top
    lines = [line.strip() for line in text.split("\n") if len(line.strip()) > 2]
    for line in lines[:10]:
        if re.match(rf"^[^{_LETTERS}]", line):
            continue
        if len(line) < 4 or len(line) > 50:
            continue
        if re.search(r"\d{2}[./-]\d{2}[./-]\d{2,4}", line):
            continue
        if re.search(r"mahalle|cadde|sokak|no:|kat:", line, re.I):
            continue
        if re.match(rf"^[{_UPPER}][{_LETTERS}\s]+", line):
            return line[:40]

    return PLACEHOLDER_DESCRIPTION


def detect_item_category(name: str) -> Optional[str]:
    for pattern, category in ITEM_CATEGORY_PATTERNS:
        if pattern.search(name):
            return category
    return None


def detect_brand(name: str) -> Optional[str]:
    for pattern in BRAND_PATTERNS:
        match = pattern.search(name)
        if match:
            brand = match.group(0)
            return brand[0].upper() + brand[1:].lower()
    return None


def _parse_item_price(raw: str) -> Optional[Decimal]:
    if "." in raw and "," in raw:
        raw = raw.replace(".", "").replace(",", ".")
    elif "," in raw:
        raw = raw.replace(",", ".")
    try:
        return Decimal(raw).quantize(Decimal("0.01"))
    except InvalidOperation:
        return None


def _is_valid_quantity(quantity: int) -> bool:
    return 1 <= quantity <= 99


def _parse_item_line(line: str) -> Optional[ReceiptItemDraft]:
    """One product line, or None when the line is not a product."""
    price_match = None
    for pattern in ITEM_PRICE_PATTERNS:
        price_match = pattern.search(line)
        if price_match:
            break
    if not price_match:
        return None

    price = _parse_item_price(price_match.group(1))
    if price is None or price <= 0 or price > MAX_ITEM_PRICE:
        return None

    name = line[:price_match.start()].strip()
    name = re.sub(r"[*#@%£₺€$]+", "", name)
    name = re.sub(r"\s+", " ", name).strip()

    if len(name) < 2 or re.fullmatch(r"[\d\s.,]+", name):
        return None
    if _TOTAL_LINE_NAME.match(name):
        return None

    quantity = 1
    unit_price: Optional[Decimal] = None

    # "3 x 25.00" only counts when quantity * unit price ~ line total
    explicit = _EXPLICIT_QTY.search(line)
    if explicit:
        candidate_qty = int(explicit.group(1))
        try:
            candidate_unit = Decimal(explicit.group(2).replace(",", "."))
        except InvalidOperation:
            candidate_unit = Decimal("0")
        if _is_valid_quantity(candidate_qty) and candidate_unit > 0:
            if abs(candidate_qty * candidate_unit - price) / price < Decimal("0.1"):
                quantity = candidate_qty
                unit_price = candidate_unit.quantize(Decimal("0.01"))

    # "Adet: 3"
    if quantity == 1:
        adet = _ADET_QTY.search(line)
        if adet and _is_valid_quantity(int(adet.group(1))):
            quantity = int(adet.group(1))
            unit_price = (price / quantity).quantize(Decimal("0.01"))

    # Numbers inside names ("Magnolya 510", "Su 1.5lt") are NOT quantities
    name = _EXPLICIT_QTY.sub("", name)
    name = re.sub(r"\b(?:adet|adt|ad)\s*[:\s]*\d{1,2}\b", "", name, flags=re.I)
    name = re.sub(r"\*\d+\s*$", "", name).strip()
    name = re.sub(rf"^(\d+)\s+(?=[{_LETTERS}])", "", name).strip()

    if len(name) < 2:
        return None

    return ReceiptItemDraft(
        name=name[:100],
        quantity=quantity,
        unit_price=unit_price,
        total_price=price,
        category=detect_item_category(name),
        brand=detect_brand(name),
    )


def extract_items(text: str) -> list[ReceiptItemDraft]:
    """Product lines, merged case-insensitively by name."""
    merged: dict[str, ReceiptItemDraft] = {}

    for raw_line in text.split("\n"):
        line = raw_line.strip()
        if len(line) < 5:
            continue
        if any(pattern.search(line) for pattern in ITEM_SKIP_PATTERNS):
            continue

        item = _parse_item_line(line)
        if item is None:
            continue

        key = item.name.lower()
        existing = merged.get(key)
        if existing is None:
            merged[key] = item
        else:
            merged[key] = existing.model_copy(update={
                "quantity": min(99, existing.quantity + item.quantity),
                "total_price": existing.total_price + item.total_price,
            })

    return list(merged.values())


# =============================================================================
# DRAFT ASSEMBLY
# =============================================================================

def score_confidence(
    amount: Decimal,
    category: str,
    receipt_date: Optional[date],
    description: str,
    item_count: int,
    engine_confidence: float,
) -> int:
    """
    Blend what we managed to extract with the engine's own word confidence.

    Capped at 95: a local read is never treated as certain.
    """
    confidence = 50
    if amount > 0:
        confidence += 20
    if category != DEFAULT_CATEGORY:
        confidence += 15
    if receipt_date:
        confidence += 10
    if description != PLACEHOLDER_DESCRIPTION:
        confidence += 5
    if item_count > 0:
        confidence += 5

    blended = int((confidence + max(0.0, engine_confidence)) / 2 + 0.5)
    return max(0, min(95, blended))


def parse_receipt_text(
    text: str,
    engine_confidence: float,
    default_currency: str = "TRY",
) -> ReceiptDraft:
    """Build a local draft from OCR text."""
    amount = extract_amount(text)
    category = extract_category(text)
    currency = extract_currency(text, default_currency)
    receipt_date = extract_date(text)
    description = extract_description(text)
    items = extract_items(text)

    return ReceiptDraft(
        amount=amount,
        currency=currency,
        category=category,
        description=description,
        date=receipt_date,
        confidence=score_confidence(
            amount, category, receipt_date, description, len(items), engine_confidence
        ),
        items=items,
        source=DraftSource.LOCAL,
    )
