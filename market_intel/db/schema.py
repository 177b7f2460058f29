from market_intel.db.connection import Database


def init_db(db: Database) -> None:
    with db.get_db() as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS market_rates (
                rate_id             TEXT PRIMARY KEY,
                origin_region       TEXT NOT NULL,
                destination_region  TEXT NOT NULL,
                equipment_type      TEXT NOT NULL,
                average_rate        REAL NOT NULL,
                min_rate            REAL NOT NULL,
                max_rate            REAL NOT NULL,
                sample_size         INTEGER DEFAULT 0,
                recorded_at         TEXT NOT NULL,
                UNIQUE (origin_region, destination_region,
                        equipment_type, recorded_at)
            );

            CREATE INDEX IF NOT EXISTS idx_market_rates_lane
                ON market_rates (origin_region, destination_region,
                                 equipment_type, recorded_at);

            CREATE TABLE IF NOT EXISTS hotspots (
                hotspot_id       TEXT PRIMARY KEY,
                name             TEXT NOT NULL,
                type             TEXT NOT NULL,
                severity         TEXT NOT NULL,
                center_lat       REAL NOT NULL,
                center_lng       REAL NOT NULL,
                radius_miles     REAL NOT NULL,
                confidence_score REAL NOT NULL,
                bonus_amount     REAL NOT NULL,
                region           TEXT NOT NULL,
                equipment_type   TEXT,
                factors          TEXT DEFAULT '{}',
                detected_at      TEXT NOT NULL,
                valid_from       TEXT NOT NULL,
                valid_until      TEXT NOT NULL,
                active           INTEGER DEFAULT 1
            );

            CREATE INDEX IF NOT EXISTS idx_hotspots_active
                ON hotspots (active, valid_until);

            CREATE TABLE IF NOT EXISTS forecasts (
                forecast_id   TEXT PRIMARY KEY,
                timeframe     TEXT NOT NULL,
                generated_at  TEXT NOT NULL,
                valid_until   TEXT NOT NULL,
                regions       TEXT NOT NULL,
                equipment     TEXT NOT NULL,
                payload       TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_forecasts_timeframe
                ON forecasts (timeframe, generated_at);

            CREATE TABLE IF NOT EXISTS auctions (
                auction_id                TEXT PRIMARY KEY,
                load_id                   TEXT NOT NULL,
                title                     TEXT NOT NULL,
                description               TEXT DEFAULT '',
                auction_type              TEXT NOT NULL,
                status                    TEXT NOT NULL,
                start_time                TEXT NOT NULL,
                end_time                  TEXT NOT NULL,
                actual_start_time         TEXT,
                actual_end_time           TEXT,
                starting_price            REAL NOT NULL,
                reserve_price             REAL,
                current_price             REAL NOT NULL,
                min_bid_increment         REAL DEFAULT 0,
                network_efficiency_weight REAL NOT NULL,
                price_weight              REAL NOT NULL,
                driver_score_weight       REAL NOT NULL,
                bids_count                INTEGER DEFAULT 0,
                winning_bid_id            TEXT,
                cancellation_reason       TEXT,
                created_by                TEXT,
                created_at                TEXT NOT NULL,
                updated_at                TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS auction_bids (
                bid_id                     TEXT PRIMARY KEY,
                auction_id                 TEXT NOT NULL
                                           REFERENCES auctions (auction_id),
                load_id                    TEXT NOT NULL,
                bidder_id                  TEXT NOT NULL,
                bidder_type                TEXT NOT NULL,
                amount                     REAL NOT NULL,
                status                     TEXT NOT NULL,
                efficiency_score           REAL NOT NULL,
                network_contribution_score REAL NOT NULL,
                driver_score               REAL DEFAULT 0,
                weighted_score             REAL NOT NULL,
                notes                      TEXT DEFAULT '',
                created_at                 TEXT NOT NULL,
                updated_at                 TEXT NOT NULL
            );

            CREATE UNIQUE INDEX IF NOT EXISTS uq_bids_auction_bidder
                ON auction_bids (auction_id, bidder_id);
        """)
