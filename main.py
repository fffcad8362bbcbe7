import logging
import os
from datetime import datetime, timezone
from urllib.parse import quote
from xml.sax.saxutils import escape

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse, Response
from pymongo.errors import PyMongoError

import config
import database
from database import get_db
from routers import admin, checkout, products, themes

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Minifig Store API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(products.router)
app.include_router(themes.router)
app.include_router(checkout.router)
app.include_router(checkout.orders_router)
app.include_router(admin.router)

SITEMAP_LIMIT = 5000


@app.get("/")
def root():
    return {"message": "%s API is running" % config.BRAND_NAME}


@app.get("/api/db-ping")
def db_ping(db=Depends(get_db)):
    try:
        return database.ping(db)
    except PyMongoError as e:
        logger.error("DB ping failed: %s", e)
        raise HTTPException(status_code=500, detail="db_ping_failed")


@app.get("/robots.txt", response_class=PlainTextResponse)
def robots():
    return "User-agent: *\nAllow: /\nDisallow: /api/\nSitemap: %s/sitemap.xml\n" % config.SITE_URL


def _url(loc: str, lastmod: str, changefreq: str, priority: str) -> str:
    return (
        "  <url>\n"
        "    <loc>%s</loc>\n"
        "    <lastmod>%s</lastmod>\n"
        "    <changefreq>%s</changefreq>\n"
        "    <priority>%s</priority>\n"
        "  </url>" % (escape(loc), lastmod, changefreq, priority)
    )


@app.get("/sitemap.xml")
def sitemap():
    site = config.SITE_URL
    now = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    urls = [
        _url(site + "/", now, "daily", "0.9"),
        _url(site + "/minifigs", now, "daily", "0.8"),
    ]
    if database.db is not None:
        cursor = database.db[config.PRODUCTS_COLLECTION].find(
            {"qty": {"$gt": 0}, "itemNo": {"$nin": [None, ""]}},
            {"itemNo": 1, "updated_at": 1},
        ).limit(SITEMAP_LIMIT)
        for doc in cursor:
            updated = doc.get("updated_at")
            lastmod = updated.strftime("%Y-%m-%dT%H:%M:%SZ") if isinstance(updated, datetime) else now
            urls.append(_url("%s/minifigs/%s" % (site, quote(doc["itemNo"], safe="")), lastmod, "weekly", "0.6"))

    xml = (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">\n'
        + "\n".join(urls)
        + "\n</urlset>\n"
    )
    return Response(content=xml, media_type="application/xml")


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            response["database_url"] = "✅ Set" if config.DATABASE_URL else "❌ Not Set"
            response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") or os.getenv("MONGODB_DB") else "❌ Not Set"
            try:
                collections = database.db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
                response["connection_status"] = "Connected"
            except PyMongoError as e:
                response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
        else:
            response["database"] = "⚠️  Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"
    return response


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
