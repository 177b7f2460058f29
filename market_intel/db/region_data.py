"""
Static geography for market regions: region centers, aliases, state→region,
and the freight cities most lanes are quoted between.
"""

# Canonical region -> (lat, lng, radius_miles)
REGION_CENTERS: dict[str, tuple[float, float, float]] = {
    "Midwest": (41.88, -87.63, 250.0),
    "Northeast": (40.71, -74.01, 200.0),
    "Southeast": (33.75, -84.39, 250.0),
    "Southwest": (33.45, -112.07, 300.0),
    "South Central": (32.78, -96.80, 250.0),
    "West": (34.05, -118.24, 300.0),
    "Northwest": (47.61, -122.33, 250.0),
    "Mountain": (39.74, -104.99, 300.0),
}

REGION_ALIASES: dict[str, str] = {
    "midwest": "Midwest",
    "mid west": "Midwest",
    "great lakes": "Midwest",
    "northeast": "Northeast",
    "north east": "Northeast",
    "new england": "Northeast",
    "southeast": "Southeast",
    "south east": "Southeast",
    "southwest": "Southwest",
    "south west": "Southwest",
    "south central": "South Central",
    "texas triangle": "South Central",
    "west": "West",
    "west coast": "West",
    "pacific": "West",
    "northwest": "Northwest",
    "pacific northwest": "Northwest",
    "pnw": "Northwest",
    "mountain": "Mountain",
    "rockies": "Mountain",
}

STATE_TO_REGION: dict[str, str] = {
    "IL": "Midwest", "IN": "Midwest", "OH": "Midwest", "MI": "Midwest",
    "WI": "Midwest", "MN": "Midwest", "IA": "Midwest", "MO": "Midwest",
    "NY": "Northeast", "NJ": "Northeast", "PA": "Northeast", "MA": "Northeast",
    "CT": "Northeast", "MD": "Northeast",
    "GA": "Southeast", "FL": "Southeast", "NC": "Southeast", "SC": "Southeast",
    "TN": "Southeast", "AL": "Southeast", "VA": "Southeast",
    "AZ": "Southwest", "NM": "Southwest", "NV": "Southwest",
    "TX": "South Central", "OK": "South Central", "LA": "South Central",
    "AR": "South Central",
    "CA": "West",
    "WA": "Northwest", "OR": "Northwest", "ID": "Northwest",
    "CO": "Mountain", "UT": "Mountain", "WY": "Mountain", "MT": "Mountain",
}

# "city, st" -> (lat, lng)
CITY_COORDS: dict[str, tuple[float, float]] = {
    "chicago, il": (41.8781, -87.6298),
    "indianapolis, in": (39.7684, -86.1581),
    "columbus, oh": (39.9612, -82.9988),
    "detroit, mi": (42.3314, -83.0458),
    "st. louis, mo": (38.6270, -90.1994),
    "kansas city, mo": (39.0997, -94.5786),
    "minneapolis, mn": (44.9778, -93.2650),
    "new york, ny": (40.7128, -74.0060),
    "newark, nj": (40.7357, -74.1724),
    "philadelphia, pa": (39.9526, -75.1652),
    "boston, ma": (42.3601, -71.0589),
    "baltimore, md": (39.2904, -76.6122),
    "atlanta, ga": (33.7490, -84.3880),
    "savannah, ga": (32.0809, -81.0912),
    "jacksonville, fl": (30.3322, -81.6557),
    "miami, fl": (25.7617, -80.1918),
    "charlotte, nc": (35.2271, -80.8431),
    "nashville, tn": (36.1627, -86.7816),
    "memphis, tn": (35.1495, -90.0490),
    "phoenix, az": (33.4484, -112.0740),
    "albuquerque, nm": (35.0844, -106.6504),
    "las vegas, nv": (36.1699, -115.1398),
    "dallas, tx": (32.7767, -96.7970),
    "houston, tx": (29.7604, -95.3698),
    "san antonio, tx": (29.4241, -98.4936),
    "laredo, tx": (27.5306, -99.4803),
    "oklahoma city, ok": (35.4676, -97.5164),
    "los angeles, ca": (34.0522, -118.2437),
    "oakland, ca": (37.8044, -122.2712),
    "fresno, ca": (36.7378, -119.7871),
    "seattle, wa": (47.6062, -122.3321),
    "portland, or": (45.5152, -122.6784),
    "denver, co": (39.7392, -104.9903),
    "salt lake city, ut": (40.7608, -111.8910),
}
