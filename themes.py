"""
Theme and series classification for minifigs.

Everything here is static lookup data plus pure functions so the API, the sync
and the scripts agree on theme names, browse buckets and CMF series.
"""
import re
from typing import Dict, List, Optional, Tuple

OTHER = "Other"
COLLECTIBLES = "Collectible Minifigures"


def theme_slug(name: str) -> str:
    """URL-friendly slug: "Lord of the Rings" -> "lord-of-the-rings"."""
    s = (name or "").lower()
    s = re.sub(r"['’]", "", s)
    s = s.replace("&", "and")
    s = re.sub(r"[^a-z0-9]+", "-", s)
    return s.strip("-")


# ----- Canonical themes and free-text synonyms -----

CANONICAL_THEMES = [
    "Star Wars",
    "Marvel Super Heroes",
    "DC Super Heroes",
    "Harry Potter",
    "City",
    "Ninjago",
    "Friends",
    "Jurassic World",
    "Lord of the Rings",
    "The Hobbit",
    "The LEGO Movie",
    "Disney",
    "Minecraft",
    "Technic",
    "Speed Champions",
    "Ideas",
    "Icons (Creator Expert)",
    "Creator",
    "Architecture",
    "Trains",
    "Pirates",
    "Castle",
    "Space",
    "Monkie Kid",
    "Chima",
    "Nexo Knights",
    COLLECTIBLES,
]

THEME_SYNONYMS: Dict[str, List[str]] = {
    "Star Wars": ["star wars", "clone wars", "stormtrooper", "mandalorian", "grogu", "baby yoda",
                  "boba fett", "darth", "skywalker", "sith", "jedi"],
    "Marvel Super Heroes": ["marvel", "avengers", "spider-man", "spiderman", "iron man", "hulk", "thor",
                            "black panther", "captain america", "guardians of the galaxy", "loki",
                            "ant-man", "deadpool", "x-men", "wolverine"],
    "DC Super Heroes": ["dc", "batman", "gotham", "joker", "harley quinn", "superman", "wonder woman",
                        "flash", "aquaman", "justice league"],
    "Harry Potter": ["harry potter", "hogwarts", "gryffindor", "slytherin", "hufflepuff", "ravenclaw",
                     "dumbledore", "voldemort", "death eater", "quidditch"],
    "City": ["city", "police", "fire", "airport", "town", "stuntz"],
    "Ninjago": ["ninjago", "lloyd", "kai", "zane", "cole", "jay", "nya", "garmadon"],
    "Friends": ["friends", "heartlake"],
    "Jurassic World": ["jurassic", "jurassic world", "dinosaur", "t-rex", "t rex", "raptor"],
    "Lord of the Rings": ["lord of the rings", "lotr", "gondor", "mordor", "frodo", "aragorn"],
    "The Hobbit": ["the hobbit", "hobbit", "bilbo", "smaug"],
    "The LEGO Movie": ["lego movie", "emmet", "wyldstyle", "benny", "uni-kitty", "unikitty"],
    "Disney": ["disney", "mickey", "minnie", "frozen", "elsa", "anna", "encanto", "pixar"],
    "Minecraft": ["minecraft", "creeper", "alex", "steve", "enderman"],
    "Technic": ["technic"],
    "Speed Champions": ["speed champions"],
    "Ideas": ["ideas"],
    "Icons (Creator Expert)": ["icons", "creator expert", "modular building", "modular"],
    "Creator": ["creator", "3-in-1", "3 in 1"],
    "Architecture": ["architecture"],
    "Trains": ["train", "trains", "locomotive"],
    "Pirates": ["pirates", "pirate"],
    "Castle": ["castle", "knight", "kingdoms", "lion knights", "black falcons"],
    "Space": ["space", "classic space", "astronaut"],
    "Monkie Kid": ["monkie kid", "mk"],
    "Chima": ["chima", "legends of chima"],
    "Nexo Knights": ["nexo knights", "nexo"],
    COLLECTIBLES: ["collectible minifigures", "collectable minifigures", "cmf", r"series \d+"],
}


def _alias_regexes() -> List[Tuple[str, "re.Pattern"]]:
    out = []
    for canon in CANONICAL_THEMES:
        for variant in [canon] + THEME_SYNONYMS.get(canon, []):
            source = variant if "\\d" in variant else re.escape(variant)
            out.append((canon, re.compile(r"\b" + source + r"\b", re.IGNORECASE)))
    return out


_ALIAS_REGEXES = _alias_regexes()


def sniff_theme(text: Optional[str]) -> Optional[str]:
    """Detect a canonical theme from any free text. First match wins."""
    if not text:
        return None
    for canon, rx in _ALIAS_REGEXES:
        if rx.search(text):
            return canon
    return None


def list_canonical_themes() -> List[Dict[str, str]]:
    return [{"name": name, "slug": theme_slug(name)} for name in CANONICAL_THEMES]


# ----- Collectible Minifigures series -----

CMF_SERIES: Dict[str, str] = {
    "col01": "Series 1",
    "col02": "Series 2",
    "col03": "Series 3",
    "col04": "Series 4",
    "col05": "Series 5",
    "col06": "Series 6",
    "col07": "Series 7",
    "col08": "Series 8",
    "col09": "Series 9",
    "col10": "Series 10",
    "col11": "Series 11",
    "col12": "Series 12",
    "col13": "Series 13",
    "col14": "Series 14 (Monsters)",
    "col15": "Series 15",
    "col16": "Series 16",
    "col17": "Series 17",
    "col18": "Series 18 (Party)",
    "col19": "Series 19",
    "col20": "Series 20",
    "col21": "Series 21",
    "col22": "Series 22",
    "col23": "Series 23",
    "col24": "Series 24",
    "col25": "Series 25",
    # named series
    "coldis": "Disney Series 1",
    "coldis2": "Disney Series 2",
    "colhp": "Harry Potter Series 1",
    "colhp2": "Harry Potter Series 2",
    "colmar": "Marvel Studios",
    "collt": "Looney Tunes",
    "colmup": "The Muppets",
    "colsim": "The Simpsons Series 1",
    "colsim2": "The Simpsons Series 2",
    "coltlm": "The LEGO Movie",
    "coltlm2": "The LEGO Movie 2",
    "colbat": "The LEGO Batman Movie",
    "colgb": "Team GB",
    "coldfb": "German National Team",
}

CMF_ORDER: List[str] = list(CMF_SERIES.keys())

# longest code first so "coldis2" wins over "coldis"
_NAMED_CMF_CODES = sorted((k for k in CMF_SERIES if not k[3:].isdigit()), key=len, reverse=True)

_SERIES_TEXT_RE = re.compile(r"\bseries\s*(\d{1,2})\b", re.IGNORECASE)
_SERIES_CODE_RE = re.compile(r"\bcol0?(\d{1,2})(?!\d)", re.IGNORECASE)


def series_number(text: Optional[str]) -> Optional[int]:
    """Series number from "Series 18" text or a colNN code."""
    if not text:
        return None
    m = _SERIES_TEXT_RE.search(text)
    if m:
        return int(m.group(1))
    m = _SERIES_CODE_RE.search(text)
    if m:
        return int(m.group(1))
    return None


def cmf_series(item_no: Optional[str], name: Optional[str] = None) -> Optional[Tuple[str, str]]:
    """(series_code, series_title) for a collectible minifig, else None."""
    s = (item_no or "").strip().lower()
    if s.startswith("col"):
        for code in _NAMED_CMF_CODES:
            if s.startswith(code):
                return code, CMF_SERIES[code]
        m = re.match(r"^col0?(\d{1,2})(?!\d)", s)
        if m:
            code = "col%02d" % int(m.group(1))
            if code in CMF_SERIES:
                return code, CMF_SERIES[code]

    n = (name or "").lower()
    if "collectible" in n or "collectable" in n or "minifigure series" in n or s.startswith("col"):
        num = series_number(name)
        if num is not None:
            code = "col%02d" % num
            if code in CMF_SERIES:
                return code, CMF_SERIES[code]
    return None


# ----- Main theme classification -----

# Store-specific corrections for lots BrickLink files under a misleading prefix.
THEME_OVERRIDES: Dict[str, str] = {
    "spd001": "Super Heroes",
    "spd002": "Super Heroes",
    "tlm095": "Super Heroes",
}

# Ordered: first phrase contained in the lowercased name wins.
NAME_PHRASES: List[Tuple[str, str]] = [
    ("collectible minifig", COLLECTIBLES),
    ("minifigure series", COLLECTIBLES),
    ("star wars", "Star Wars"),
    ("harry potter", "Harry Potter"),
    ("fantastic beasts", "Harry Potter"),
    ("hogwarts", "Harry Potter"),
    ("pirates of the caribbean", "Pirates of the Caribbean"),
    ("lord of the rings", "The Lord of the Rings"),
    ("the hobbit", "The Hobbit"),
    ("jurassic", "Jurassic World"),
    ("ninjago", "Ninjago"),
    ("marvel", "Super Heroes"),
    ("avengers", "Super Heroes"),
    ("spider-man", "Super Heroes"),
    ("batman", "Super Heroes"),
    ("dc super heroes", "Super Heroes"),
    ("toy story", "Toy Story"),
    ("lego movie", "The LEGO Movie"),
    ("indiana jones", "Indiana Jones"),
    ("monkie kid", "Monkie Kid"),
    ("legends of chima", "Legends of Chima"),
    ("nexo knights", "Nexo Knights"),
    ("the simpsons", "The Simpsons"),
    ("spongebob", "SpongeBob SquarePants"),
    ("minecraft", "Minecraft"),
    ("speed champions", "Speed Champions"),
    ("disney", "Disney"),
]

# Ordered BrickLink item-number prefixes. Sub-themes collapse into their family.
THEME_PREFIX_MAP: List[Tuple["re.Pattern", str]] = [
    (re.compile(r"^col"), COLLECTIBLES),
    (re.compile(r"^(cty|twn|cop|pol|res|tra|con)"), "City"),
    (re.compile(r"^sw"), "Star Wars"),
    (re.compile(r"^hp"), "Harry Potter"),
    (re.compile(r"^(njo|nin)"), "Ninjago"),
    (re.compile(r"^(jw|jp)"), "Jurassic World"),
    (re.compile(r"^toy"), "Toy Story"),
    (re.compile(r"^dis"), "Disney"),
    (re.compile(r"^sh"), "Super Heroes"),
    (re.compile(r"^loc"), "Legends of Chima"),
    (re.compile(r"^lor"), "The Lord of the Rings"),
    (re.compile(r"^hob"), "The Hobbit"),
    (re.compile(r"^(cas|kn)"), "Castle"),
    (re.compile(r"^poc"), "Pirates of the Caribbean"),
    (re.compile(r"^(pir|pi\d)"), "Pirates"),
    (re.compile(r"^(iaj|ind)"), "Indiana Jones"),
    (re.compile(r"^rac"), "Racers"),
    (re.compile(r"^mm\d"), "Mars Mission"),
    (re.compile(r"^atl"), "Atlantis"),
    (re.compile(r"^uagt"), "Ultra Agents"),
    (re.compile(r"^agt"), "Agents"),
    (re.compile(r"^sim"), "The Simpsons"),
    (re.compile(r"^vid"), "VIDIYO"),
    (re.compile(r"^mk\d"), "Monkie Kid"),
    (re.compile(r"^nex"), "Nexo Knights"),
    (re.compile(r"^ovr"), "Overwatch"),
    (re.compile(r"^son"), "Sonic"),
    (re.compile(r"^bob"), "SpongeBob SquarePants"),
    (re.compile(r"^gs\d"), "Galaxy Squad"),
    (re.compile(r"^sc\d"), "Speed Champions"),
    (re.compile(r"^sp"), "Space"),
    (re.compile(r"^hol"), "Holiday / Seasonal"),
    (re.compile(r"^hs\d"), "Hidden Side"),
    (re.compile(r"^gen"), "General"),
    (re.compile(r"^adp"), "Adventurers"),
    (re.compile(r"^dim"), "Dimensions"),
    (re.compile(r"^tlm"), "The LEGO Movie"),
    (re.compile(r"^min"), "Minecraft"),
    (re.compile(r"^idea"), "Ideas"),
    (re.compile(r"^ww"), "Wild West"),
]


def classify_theme(name: Optional[str], item_no: Optional[str]) -> str:
    """
    Canonical theme for a product.

    Order: explicit item overrides (including CMF series codes), name phrases,
    item-number prefixes, word-boundary synonyms in the name, then "Other".
    """
    code = (item_no or "").strip().lower()
    text = (name or "").lower()

    if code in THEME_OVERRIDES:
        return THEME_OVERRIDES[code]
    if code and cmf_series(code) is not None:
        return COLLECTIBLES

    for phrase, title in NAME_PHRASES:
        if phrase in text:
            return title

    if code:
        for rx, title in THEME_PREFIX_MAP:
            if rx.match(code):
                return title

    sniffed = sniff_theme(name)
    if sniffed:
        return sniffed
    return OTHER


# ----- Browse buckets -----

THEME_BUCKETS: List[Dict] = [
    {"key": "starwars", "label": "Star Wars", "prefixes": ["sw"], "contains": ["star wars"]},
    {"key": "harrypotter", "label": "Harry Potter", "prefixes": ["hp"], "contains": ["harry potter", "hogwarts"]},
    {"key": "superheroes", "label": "Super Heroes", "prefixes": ["sh"], "contains": ["marvel", "batman", "spider-man"]},
    {"key": "ninjago", "label": "Ninjago", "prefixes": ["njo", "nin"], "contains": ["ninjago"]},
    {"key": "city", "label": "City / Town", "prefixes": ["twn", "cty"], "contains": []},
    {"key": "space", "label": "Space & Sci-Fi", "prefixes": ["sp0", "gs0", "ice", "uf0", "mtr"], "contains": []},
    {"key": "pirates", "label": "Pirates", "prefixes": ["pi0", "pir"], "contains": []},
    {"key": "castle", "label": "Castle", "prefixes": ["cas", "kk"], "contains": []},
    {"key": "trains", "label": "Trains", "prefixes": ["trn"], "contains": []},
    {"key": "jurassic", "label": "Jurassic World", "prefixes": ["jw", "jp"], "contains": ["jurassic"]},
    {"key": "lotr", "label": "Lord of the Rings / Hobbit", "prefixes": ["lor"], "contains": ["lord of the rings", "the hobbit"]},
    {"key": "legomovie", "label": "The LEGO Movie", "prefixes": ["tlm"], "contains": []},
    {"key": "disney", "label": "Disney", "prefixes": ["dis"], "contains": []},
    {"key": "simpsons", "label": "The Simpsons", "prefixes": ["sim"], "contains": []},
    {"key": "spongebob", "label": "SpongeBob", "prefixes": ["bob"], "contains": []},
    {"key": "nexoknights", "label": "Nexo Knights", "prefixes": ["nex"], "contains": []},
    {"key": "hiddenside", "label": "Hidden Side", "prefixes": ["hs0"], "contains": []},
    {"key": "ideas", "label": "LEGO Ideas", "prefixes": ["idea"], "contains": []},
    {"key": "dimensions", "label": "LEGO Dimensions", "prefixes": ["dim"], "contains": []},
    {"key": "chima", "label": "Legends of Chima", "prefixes": ["loc"], "contains": []},
    {"key": "indianajones", "label": "Indiana Jones", "prefixes": ["iaj"], "contains": []},
    {"key": "atlantis", "label": "Atlantis", "prefixes": ["atl"], "contains": []},
    {"key": "monsterfighters", "label": "Monster Fighters", "prefixes": ["mof"], "contains": []},
    {"key": "toystory", "label": "Toy Story", "prefixes": ["toy"], "contains": []},
    {"key": "agents", "label": "Agents / Ultra Agents", "prefixes": ["uagt", "agt"], "contains": []},
    {"key": "piratescaribbean", "label": "Pirates of the Caribbean", "prefixes": ["poc"], "contains": []},
    {"key": "collectibles", "label": COLLECTIBLES, "prefixes": ["col"], "contains": ["collectible minifig"]},
    {"key": "vidiyo", "label": "VIDIYO", "prefixes": ["vid"], "contains": []},
    {"key": "adventurers", "label": "Adventurers", "prefixes": ["adp", "adv"], "contains": []},
]

OTHER_BUCKET = {"key": "other", "label": OTHER, "prefixes": [], "contains": []}

BUCKETS_BY_KEY: Dict[str, Dict] = {b["key"]: b for b in THEME_BUCKETS}


def bucket_for(item_no: Optional[str], name: Optional[str] = None) -> Dict:
    """Browse bucket for an item: prefix matches first, then name fragments."""
    code = (item_no or "").strip().lower()
    text = (name or "").lower()
    if code:
        for bucket in THEME_BUCKETS:
            if any(code.startswith(p) for p in bucket["prefixes"]):
                return bucket
    if text:
        for bucket in THEME_BUCKETS:
            if any(frag in text for frag in bucket["contains"]):
                return bucket
    return OTHER_BUCKET


def theme_key_for(item_no: Optional[str], name: Optional[str] = None) -> str:
    return bucket_for(item_no, name)["key"]


def classify_product(doc: Dict) -> Dict[str, Optional[str]]:
    """Derived fields stored on a product document."""
    item_no = doc.get("itemNo")
    name = doc.get("name")
    series = cmf_series(item_no, name)
    return {
        "themeKey": theme_key_for(item_no, name),
        "themeLabel": classify_theme(name, item_no),
        "seriesKey": series[0] if series else None,
    }
