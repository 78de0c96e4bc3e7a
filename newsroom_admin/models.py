# Copyright (c) 2026 Mohammed Hassan. All rights reserved.
# Proprietary and confidential. Unauthorized copying, modification, distribution, or use is prohibited.

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, ForeignKey, Boolean, Float
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

# Stored as SQL NULL rather than the JSON literal 'null' so IS NULL filters work
NullableJSON = JSON(none_as_null=True)


class Settings(Base):
    __tablename__ = "settings"
    id = Column(Integer, primary_key=True, index=True)

    llm_provider = Column(String, nullable=True)
    llm_text_provider = Column(String, nullable=True)
    llm_text_model = Column(String, nullable=True)
    llm_image_provider = Column(String, nullable=True)
    llm_image_model = Column(String, nullable=True)

    openai_api_key = Column(Text, nullable=True)
    anthropic_api_key = Column(Text, nullable=True)
    gemini_api_key = Column(Text, nullable=True)
    gemini_v22_api_key = Column(Text, nullable=True)
    mistral_api_key = Column(Text, nullable=True)
    zai_api_key = Column(Text, nullable=True)

    auto_generation_enabled = Column(Boolean, default=False)
    generation_interval_hours = Column(Integer, default=24)
    last_auto_generation = Column(DateTime(timezone=True), nullable=True)

    news_auto_retell_enabled = Column(Boolean, default=True)
    news_auto_dialogue_enabled = Column(Boolean, default=True)
    news_auto_tweets_enabled = Column(Boolean, default=True)
    news_auto_archive_enabled = Column(Boolean, default=False)
    news_retell_ratio = Column(Float, default=1.0)
    news_dialogue_count = Column(Integer, default=5)
    news_tweet_count = Column(Integer, default=4)
    news_archive_days = Column(Integer, default=14)
    news_feed_page_size = Column(Integer, default=40)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class CronJobConfig(Base):
    __tablename__ = "cron_job_configs"
    id = Column(Integer, primary_key=True, index=True)
    job_name = Column(String, unique=True, index=True, nullable=False)
    job_type = Column(String, nullable=False, default="bulk_retell")  # bulk_retell, fetch_rss, process_pending, cache_refresh
    enabled = Column(Boolean, nullable=False, default=True)
    frequency_minutes = Column(Integer, nullable=False, default=60)
    countries = Column(JSON, nullable=False, default=list)
    processing_options = Column(JSON, nullable=False, default=dict)

    last_run_at = Column(DateTime(timezone=True), nullable=True)
    last_run_status = Column(String, nullable=True)  # success, warning, error
    last_run_details = Column(NullableJSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class CronJobEvent(Base):
    __tablename__ = "cron_job_events"
    id = Column(Integer, primary_key=True, index=True)
    job_name = Column(String, index=True, nullable=False)
    event_type = Column(String, nullable=False)  # created, updated, deleted, scheduled, unscheduled, sync_failed
    status = Column(String, nullable=False, default="success")
    message = Column(Text, nullable=True)
    details = Column(NullableJSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)


class LLMUsageLog(Base):
    __tablename__ = "llm_usage_logs"
    id = Column(Integer, primary_key=True, index=True)
    provider = Column(String, nullable=False, index=True)
    model = Column(String, nullable=True)
    operation = Column(String, nullable=False, index=True)
    tokens_used = Column(Integer, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    success = Column(Boolean, nullable=False, default=True)
    error_message = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    metadata_ = Column("metadata", NullableJSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)


class NewsCountry(Base):
    __tablename__ = "news_countries"
    id = Column(Integer, primary_key=True, index=True)
    code = Column(String, unique=True, nullable=False)  # upper-case ISO code
    name = Column(String, nullable=False)

    items = relationship("NewsRssItem", back_populates="country")


class NewsRssItem(Base):
    __tablename__ = "news_rss_items"
    id = Column(Integer, primary_key=True, index=True)
    country_id = Column(Integer, ForeignKey("news_countries.id"), nullable=True, index=True)

    title = Column(String, nullable=False)
    slug = Column(String, index=True, nullable=True)
    url = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    content = Column(Text, nullable=True)
    key_points = Column(NullableJSON, nullable=True)
    chat_dialogue = Column(NullableJSON, nullable=True)
    tweets = Column(NullableJSON, nullable=True)

    seo_title = Column(String, nullable=True)
    seo_description = Column(Text, nullable=True)
    seo_keywords = Column(JSON, nullable=True)

    is_archived = Column(Boolean, default=False)
    fetched_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    country = relationship("NewsCountry", back_populates="items")


class WikiEntity(Base):
    __tablename__ = "wiki_entities"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, index=True, nullable=True)
    entity_type = Column(String, default="person")  # person, organization, location, other
    description = Column(Text, nullable=True)
    extract = Column(Text, nullable=True)
    image_url = Column(Text, nullable=True)
    wiki_url = Column(Text, nullable=True)
    search_count = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Volume(Base):
    __tablename__ = "volumes"
    id = Column(Integer, primary_key=True, index=True)
    number = Column(Integer, nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    chapters = relationship("Chapter", back_populates="volume")


class Chapter(Base):
    __tablename__ = "chapters"
    id = Column(Integer, primary_key=True, index=True)
    volume_id = Column(Integer, ForeignKey("volumes.id"), nullable=True)
    number = Column(Integer, nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    week_start = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    volume = relationship("Volume", back_populates="chapters")
    parts = relationship("Part", back_populates="chapter")


class Part(Base):
    __tablename__ = "parts"
    id = Column(Integer, primary_key=True, index=True)
    chapter_id = Column(Integer, ForeignKey("chapters.id"), nullable=True)
    number = Column(Integer, nullable=False)
    title = Column(String, nullable=False)
    content = Column(Text, nullable=True)
    date = Column(String, nullable=True)
    status = Column(String, nullable=False, default="draft")  # draft, scheduled, published
    seo_title = Column(String, nullable=True)
    seo_description = Column(Text, nullable=True)
    scheduled_at = Column(DateTime(timezone=True), nullable=True)
    published_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    chapter = relationship("Chapter", back_populates="parts")


class Character(Base):
    __tablename__ = "characters"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    character_type = Column(String, nullable=True)
    avatar = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class CharacterRelationship(Base):
    __tablename__ = "character_relationships"
    id = Column(Integer, primary_key=True, index=True)
    character_id = Column(Integer, ForeignKey("characters.id"), nullable=False)
    related_character_id = Column(Integer, ForeignKey("characters.id"), nullable=False)
    relationship_type = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    strength = Column(Integer, default=50)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Generation(Base):
    __tablename__ = "generations"
    id = Column(Integer, primary_key=True, index=True)
    generation_type = Column(String, nullable=False)
    prompt = Column(Text, nullable=True)
    result = Column(Text, nullable=True)
    model_used = Column(String, nullable=True)
    part_id = Column(Integer, ForeignKey("parts.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
