"""
Migration: Add lead auction tables.

Creates 5 tables for the auction/offer lifecycle:
1. applications - leads and their auction window
2. offers - one offer per bank per application
3. view_records - first view of a lead by a bank
4. rejection_records - banks declining a lead
5. audit_entries - append-only event log

Key design principles:
- Uniqueness per (application, bidder) is enforced by the database
- Audit entries are ordered by (timestamp, sequence)
- Nothing but applications is ever updated in place; no row is deleted
"""
from sqlalchemy import create_engine, text
import os

# Use same DB URL pattern as main app
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+psycopg2://{os.getenv('USER', 'postgres')}@localhost:5432/lead_auction"
)


def table_exists(conn, table_name: str) -> bool:
    """Check if a table exists in the database."""
    result = conn.execute(text("""
        SELECT EXISTS (
            SELECT FROM information_schema.tables
            WHERE table_name = :table_name
        )
    """), {"table_name": table_name})
    return result.fetchone()[0]


def run_migration():
    """Create lead auction tables."""
    engine = create_engine(DATABASE_URL)

    with engine.connect() as conn:
        # =================================================================
        # TABLE 1: applications
        # =================================================================
        if table_exists(conn, "applications"):
            print("applications table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE applications (
                    id VARCHAR(36) PRIMARY KEY,
                    owner_business_id VARCHAR(36) NOT NULL,
                    status VARCHAR(32) NOT NULL DEFAULT 'draft',
                    submitted_at TIMESTAMP,
                    auction_end_time TIMESTAMP,
                    selected_offer_id VARCHAR(36),
                    financial_profile JSON NOT NULL,
                    priority_level VARCHAR(32) NOT NULL DEFAULT 'normal',
                    file_name VARCHAR(255),
                    file_mimetype VARCHAR(100),
                    file_handle VARCHAR(500),
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """))
            conn.execute(text("""
                CREATE INDEX idx_applications_owner ON applications(owner_business_id)
            """))
            conn.execute(text("""
                CREATE INDEX idx_applications_status ON applications(status)
            """))
            conn.execute(text("""
                CREATE INDEX idx_applications_end_time ON applications(auction_end_time)
            """))
            print("Created applications table")

        # =================================================================
        # TABLE 2: offers
        # =================================================================
        if table_exists(conn, "offers"):
            print("offers table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE offers (
                    id VARCHAR(36) PRIMARY KEY,
                    application_id VARCHAR(36) NOT NULL REFERENCES applications(id),
                    bidder_id VARCHAR(36) NOT NULL,
                    terms JSON NOT NULL,
                    status VARCHAR(32) NOT NULL DEFAULT 'submitted',
                    fee_accepted BOOLEAN NOT NULL DEFAULT FALSE,
                    file_name VARCHAR(255),
                    file_mimetype VARCHAR(100),
                    file_handle VARCHAR(500),
                    submitted_at TIMESTAMP NOT NULL,
                    expires_at TIMESTAMP NOT NULL,
                    decided_at TIMESTAMP,
                    CONSTRAINT uq_offer_application_bidder UNIQUE (application_id, bidder_id)
                )
            """))
            conn.execute(text("""
                CREATE INDEX idx_offers_application ON offers(application_id)
            """))
            conn.execute(text("""
                CREATE INDEX idx_offers_bidder ON offers(bidder_id)
            """))
            print("Created offers table")

        # =================================================================
        # TABLE 3: view_records
        # =================================================================
        if table_exists(conn, "view_records"):
            print("view_records table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE view_records (
                    id VARCHAR(36) PRIMARY KEY,
                    application_id VARCHAR(36) NOT NULL REFERENCES applications(id),
                    viewer_id VARCHAR(36) NOT NULL,
                    first_viewed_at TIMESTAMP NOT NULL,
                    CONSTRAINT uq_view_application_viewer UNIQUE (application_id, viewer_id)
                )
            """))
            conn.execute(text("""
                CREATE INDEX idx_view_records_viewer ON view_records(viewer_id)
            """))
            print("Created view_records table")

        # =================================================================
        # TABLE 4: rejection_records
        # =================================================================
        if table_exists(conn, "rejection_records"):
            print("rejection_records table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE rejection_records (
                    id VARCHAR(36) PRIMARY KEY,
                    application_id VARCHAR(36) NOT NULL REFERENCES applications(id),
                    viewer_id VARCHAR(36) NOT NULL,
                    reason TEXT,
                    active BOOLEAN NOT NULL DEFAULT TRUE,
                    cleared_at TIMESTAMP,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP,
                    CONSTRAINT uq_rejection_application_viewer UNIQUE (application_id, viewer_id)
                )
            """))
            conn.execute(text("""
                CREATE INDEX idx_rejection_records_viewer ON rejection_records(viewer_id)
            """))
            print("Created rejection_records table")

        # =================================================================
        # TABLE 5: audit_entries
        # =================================================================
        if table_exists(conn, "audit_entries"):
            print("audit_entries table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE audit_entries (
                    id VARCHAR(36) PRIMARY KEY,
                    application_id VARCHAR(36) NOT NULL REFERENCES applications(id),
                    sequence INTEGER NOT NULL,
                    event_type VARCHAR(32) NOT NULL,
                    from_status VARCHAR(32),
                    to_status VARCHAR(32) NOT NULL,
                    actor VARCHAR(36) NOT NULL,
                    actor_role VARCHAR(32) NOT NULL,
                    reason TEXT,
                    offer_id VARCHAR(36),
                    details JSON,
                    timestamp TIMESTAMP NOT NULL,
                    CONSTRAINT uq_audit_application_sequence UNIQUE (application_id, sequence)
                )
            """))
            conn.execute(text("""
                CREATE INDEX idx_audit_entries_application ON audit_entries(application_id, timestamp, sequence)
            """))
            print("Created audit_entries table")

        conn.commit()
        print("Migration complete")


if __name__ == "__main__":
    run_migration()
