"""Static per-symbol baselines used for mock quotes and analytics."""

BASELINE = {
    "IBM":   {"price": 130, "volume": 3000000, "percent_change": 0.5},
    "AAPL":  {"price": 150, "volume": 5000000, "percent_change": 0.7},
    "MSFT":  {"price": 280, "volume": 2000000, "percent_change": -0.3},
    "GOOGL": {"price": 2700, "volume": 1000000, "percent_change": 0.2},
    "AMZN":  {"price": 3400, "volume": 1500000, "percent_change": -0.1},
    "TSLA":  {"price": 700, "volume": 4000000, "percent_change": 1.2},
    "NFLX":  {"price": 550, "volume": 1800000, "percent_change": -0.5},
    "META":  {"price": 330, "volume": 2200000, "percent_change": 0.8},
    "NVDA":  {"price": 200, "volume": 2500000, "percent_change": 2.1},
    "ORCL":  {"price": 90, "volume": 1500000, "percent_change": -0.3},
    "WMT":   {"price": 140, "volume": 3000000, "percent_change": 0.3},
    "HD":    {"price": 300, "volume": 1000000, "percent_change": -0.2},
    "JNJ":   {"price": 170, "volume": 900000, "percent_change": 0.1},
    "PFE":   {"price": 50, "volume": 2000000, "percent_change": -0.4},
    "BAC":   {"price": 40, "volume": 2500000, "percent_change": 0.6},
}

HISTORY = {
    "IBM":   [128, 129, 130, 131, 130],
    "AAPL":  [148, 149, 150, 151, 150],
    "MSFT":  [278, 279, 280, 281, 280],
    "GOOGL": [2690, 2700, 2700, 2710, 2700],
    "AMZN":  [3380, 3390, 3400, 3410, 3400],
    "TSLA":  [680, 690, 700, 710, 700],
    "NFLX":  [545, 547, 550, 553, 550],
    "META":  [325, 327, 330, 332, 330],
    "NVDA":  [195, 197, 200, 202, 200],
    "ORCL":  [88, 89, 90, 91, 90],
    "WMT":   [136, 138, 140, 142, 140],
    "HD":    [295, 298, 300, 305, 300],
    "JNJ":   [168, 169, 170, 171, 170],
    "PFE":   [48, 49, 50, 51, 50],
    "BAC":   [38, 39, 40, 41, 40],
}

RISK_FACTORS = {
    "IBM": 0.3, "AAPL": 0.4, "MSFT": 0.5, "GOOGL": 0.2, "AMZN": 0.6,
    "TSLA": 0.8, "NFLX": 0.7, "META": 0.5, "NVDA": 0.9, "ORCL": 0.3,
    "WMT": 0.4, "HD": 0.5, "JNJ": 0.3, "PFE": 0.4, "BAC": 0.5,
}
DEFAULT_RISK_FACTOR = 0.5

TEAMS = {
    "Gryffindor": "AAPL", "Slytherin": "TSLA", "Hufflepuff": "MSFT",
    "Ravenclaw": "GOOGL", "Durmstrang": "AMZN", "Phoenix": "NFLX",
    "Shadow": "META", "Mystic": "NVDA", "Titan": "ORCL", "Oracle": "IBM",
}

SYMBOLS = list(BASELINE)
