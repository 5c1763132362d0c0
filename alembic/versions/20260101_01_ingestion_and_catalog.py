"""
Ingestion + catalog schema.

- upload_batches / media_objects: upload grouping and per-object lifecycle.
- artists / albums / tracks / genres / track_genres: deduplicated catalog.

Enums are stored as VARCHAR + CHECK (non-native) so the same revision applies
to Postgres and SQLite.
"""

from alembic import op
import sqlalchemy as sa

# Revision identifiers, used by Alembic.
revision = "20260101_01_ingestion_and_catalog"
down_revision = None
branch_labels = None
depends_on = None


MEDIA_KINDS = ("audio", "artwork")
MEDIA_STATES = ("UPLOADING", "UPLOADED", "VALIDATED", "INGESTED", "READY", "FAILED")
ERROR_KINDS = (
    "TRANSIENT_STORE_ERROR",
    "OBJECT_NOT_YET_PRESENT",
    "INTEGRITY_MISMATCH",
    "EXTRACTION_FAILED",
    "RECONCILIATION_CONFLICT",
    "NOT_ENTITLED",
    "ASSET_NOT_READY",
)


def _str_enum(values, name: str) -> sa.Enum:
    return sa.Enum(*values, name=name, native_enum=False, length=32, create_constraint=True)


def upgrade() -> None:
    # --- Upload batches ---
    op.create_table(
        "upload_batches",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("created_by", sa.String(length=128), nullable=False),
        sa.Column("is_private", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_upload_batches"),
        sa.CheckConstraint("length(trim(created_by)) > 0", name="ck_upload_batches_created_by_not_blank"),
    )
    op.create_index("ix_upload_batches_created_by", "upload_batches", ["created_by"], unique=False)

    # --- Artists ---
    op.create_table(
        "artists",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("name_normalized", sa.String(length=255), nullable=False),
        sa.Column("artwork_key", sa.String(length=1024), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_artists"),
        sa.UniqueConstraint("name_normalized", name="uq_artists_name_normalized"),
        sa.CheckConstraint("length(trim(name)) > 0", name="ck_artists_name_not_blank"),
    )

    # --- Albums ---
    op.create_table(
        "albums",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("artist_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("title_normalized", sa.String(length=255), nullable=False),
        sa.Column("artwork_key", sa.String(length=1024), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_albums"),
        sa.ForeignKeyConstraint(
            ["artist_id"], ["artists.id"], name="fk_albums_artist_id_artists", ondelete="CASCADE"
        ),
        sa.UniqueConstraint("artist_id", "title_normalized", name="uq_albums_artist_title"),
        sa.CheckConstraint("length(trim(title)) > 0", name="ck_albums_title_not_blank"),
    )
    op.create_index("ix_albums_artist_id", "albums", ["artist_id"], unique=False)

    # --- Genres ---
    op.create_table(
        "genres",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=80), nullable=False),
        sa.Column("name_normalized", sa.String(length=80), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_genres"),
        sa.UniqueConstraint("name_normalized", name="uq_genres_name_normalized"),
        sa.CheckConstraint("length(trim(name)) > 0", name="ck_genres_name_not_blank"),
    )

    # --- Tracks ---
    op.create_table(
        "tracks",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("natural_key", sa.String(length=128), nullable=False),
        sa.Column("external_id", sa.String(length=128), nullable=True),
        sa.Column("artist_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("album_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("track_number", sa.Integer(), nullable=True),
        sa.Column("disc_number", sa.Integer(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("bitrate", sa.Integer(), nullable=True),
        sa.Column("is_private", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("uploaded_by", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_tracks"),
        sa.ForeignKeyConstraint(
            ["artist_id"], ["artists.id"], name="fk_tracks_artist_id_artists", ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["album_id"], ["albums.id"], name="fk_tracks_album_id_albums", ondelete="SET NULL"
        ),
        sa.UniqueConstraint("natural_key", name="uq_tracks_natural_key"),
        sa.CheckConstraint("length(trim(title)) > 0", name="ck_tracks_title_not_blank"),
        sa.CheckConstraint("(duration_ms IS NULL) OR (duration_ms >= 0)", name="ck_tracks_duration_nonneg"),
        sa.CheckConstraint("(track_number IS NULL) OR (track_number > 0)", name="ck_tracks_track_number_pos"),
        sa.CheckConstraint("(disc_number IS NULL) OR (disc_number > 0)", name="ck_tracks_disc_number_pos"),
    )
    op.create_index("ix_tracks_artist_id", "tracks", ["artist_id"], unique=False)
    op.create_index("ix_tracks_album_id", "tracks", ["album_id"], unique=False)
    op.create_index("ix_tracks_album_order", "tracks", ["album_id", "disc_number", "track_number"], unique=False)

    # --- Track ⇄ Genre ---
    op.create_table(
        "track_genres",
        sa.Column("track_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("genre_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.PrimaryKeyConstraint("track_id", "genre_id", name="pk_track_genres"),
        sa.ForeignKeyConstraint(
            ["track_id"], ["tracks.id"], name="fk_track_genres_track_id_tracks", ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["genre_id"], ["genres.id"], name="fk_track_genres_genre_id_genres", ondelete="CASCADE"
        ),
    )
    op.create_index("ix_track_genres_genre", "track_genres", ["genre_id"], unique=False)

    # --- Media objects ---
    op.create_table(
        "media_objects",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("batch_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("kind", _str_enum(MEDIA_KINDS, "media_kind"), nullable=False),
        sa.Column("storage_key", sa.String(length=1024), nullable=False),
        sa.Column("declared_size", sa.BigInteger(), nullable=False),
        sa.Column("declared_sha256", sa.String(length=64), nullable=False),
        sa.Column("declared_mime", sa.String(length=127), nullable=False),
        sa.Column("sniffed_mime", sa.String(length=127), nullable=True),
        sa.Column("observed_sha256", sa.String(length=64), nullable=True),
        sa.Column("state", _str_enum(MEDIA_STATES, "media_state"), nullable=False),
        sa.Column("error_kind", _str_enum(ERROR_KINDS, "media_error_kind"), nullable=True),
        sa.Column("error_detail", sa.Text(), nullable=True),
        sa.Column("track_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("album_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("artist_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("transitioned_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_media_objects"),
        sa.ForeignKeyConstraint(
            ["batch_id"], ["upload_batches.id"], name="fk_media_objects_batch_id_upload_batches", ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["track_id"], ["tracks.id"], name="fk_media_objects_track_id_tracks", ondelete="SET NULL"
        ),
        sa.ForeignKeyConstraint(
            ["album_id"], ["albums.id"], name="fk_media_objects_album_id_albums", ondelete="SET NULL"
        ),
        sa.ForeignKeyConstraint(
            ["artist_id"], ["artists.id"], name="fk_media_objects_artist_id_artists", ondelete="SET NULL"
        ),
        sa.UniqueConstraint("storage_key", name="uq_media_objects_storage_key"),
        sa.CheckConstraint("declared_size > 0", name="ck_media_objects_declared_size_positive"),
        sa.CheckConstraint("length(declared_sha256) = 64", name="ck_media_objects_declared_sha256_len"),
        sa.CheckConstraint("length(trim(storage_key)) > 0", name="ck_media_objects_storage_key_not_blank"),
        sa.CheckConstraint(
            "(state <> 'FAILED') OR (error_kind IS NOT NULL)",
            name="ck_media_objects_failed_has_error_kind",
        ),
    )
    op.create_index("ix_media_objects_batch_id", "media_objects", ["batch_id"], unique=False)
    op.create_index("ix_media_objects_track_id", "media_objects", ["track_id"], unique=False)
    op.create_index("ix_media_objects_album_id", "media_objects", ["album_id"], unique=False)
    op.create_index("ix_media_objects_artist_id", "media_objects", ["artist_id"], unique=False)
    op.create_index("ix_media_objects_batch_state", "media_objects", ["batch_id", "state"], unique=False)
    op.create_index("ix_media_objects_track_state", "media_objects", ["track_id", "state"], unique=False)


def downgrade() -> None:
    op.drop_table("media_objects")
    op.drop_table("track_genres")
    op.drop_table("tracks")
    op.drop_table("genres")
    op.drop_table("albums")
    op.drop_table("artists")
    op.drop_table("upload_batches")
