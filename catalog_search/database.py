"""Relational catalog schema and engine factory.

Only the columns the search core reads are modelled here; pricing and stock
live in other tables and are never touched by this package.
"""
from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

logger = logging.getLogger(__name__)

Base = declarative_base()


class Brand(Base):
    __tablename__ = "brands"

    brand_id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)


class Series(Base):
    __tablename__ = "series"

    series_id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)


class Product(Base):
    __tablename__ = "products"

    product_id = Column(Integer, primary_key=True)
    external_id = Column(String(100), index=True)
    sku = Column(String(100), index=True)
    name = Column(String(500), nullable=False)
    description = Column(Text)
    brand_id = Column(Integer, ForeignKey("brands.brand_id"))
    series_id = Column(Integer, ForeignKey("series.series_id"))
    unit = Column(String(20))
    min_sale = Column(Integer)
    weight = Column(Float)
    dimensions = Column(String(100))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Category(Base):
    __tablename__ = "categories"

    category_id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)


class ProductCategory(Base):
    __tablename__ = "product_categories"

    product_id = Column(Integer, ForeignKey("products.product_id"), primary_key=True)
    category_id = Column(Integer, ForeignKey("categories.category_id"), primary_key=True)


class ProductImage(Base):
    __tablename__ = "product_images"

    image_id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.product_id"), index=True, nullable=False)
    url = Column(String(500), nullable=False)
    alt_text = Column(String(255))
    is_main = Column(Boolean, default=False)
    sort_order = Column(Integer, default=0)


class ProductAttribute(Base):
    __tablename__ = "product_attributes"

    attribute_id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.product_id"), index=True, nullable=False)
    name = Column(String(255), nullable=False)
    value = Column(String(500))
    unit = Column(String(50))
    sort_order = Column(Integer, default=0)


class ProductDocument(Base):
    __tablename__ = "product_documents"

    document_id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.product_id"), index=True, nullable=False)
    # certificate | manual | drawing
    type = Column(String(50), nullable=False)
    url = Column(String(500))


class ProductMetric(Base):
    __tablename__ = "product_metrics"

    product_id = Column(Integer, ForeignKey("products.product_id"), primary_key=True)
    popularity_score = Column(Float, default=0.0)


def create_db_engine(database_url: str) -> Engine:
    logger.info("Connecting to relational store at %s", database_url.rsplit("@", 1)[-1])
    return create_engine(database_url, pool_pre_ping=True, pool_recycle=3600)
