ADJECTIVES = (
    "adorable", "beautiful", "clever", "delightful", "elegant",
    "fierce", "gentle", "happy", "intelligent", "jolly",
    "kind", "lively", "magical", "noble", "peaceful",
    "quick", "radiant", "silly", "talented", "unique",
    "vibrant", "wise", "zealous", "brave", "calm",
    "agile", "bright", "charming", "daring", "energetic",
    "fearless", "graceful", "humble", "inventive", "joyful",
    "keen", "luminous", "mighty", "neat", "optimistic",
    "playful", "quirky", "resilient", "strong", "thoughtful",
    "uplifting", "versatile", "whimsical", "youthful", "zesty",
)

COLORS = (
    "amber", "blue", "crimson", "denim", "emerald",
    "fuchsia", "gold", "hazel", "indigo", "jade",
    "khaki", "lavender", "maroon", "navy", "olive",
    "purple", "quartz", "ruby", "silver", "teal",
    "umber", "violet", "white", "xanthic", "yellow",
    "aqua", "beige", "charcoal", "cobalt", "ebony",
    "grape", "honey", "ivory", "lime", "magenta",
    "ocean", "peach", "sapphire", "taupe", "wine",
)

ANIMALS = (
    "alpaca", "bear", "cat", "dolphin", "elephant",
    "fox", "giraffe", "horse", "iguana", "jaguar",
    "kangaroo", "lion", "monkey", "narwhal", "octopus",
    "penguin", "quokka", "rabbit", "seal", "tiger",
    "unicorn", "vulture", "whale", "xerus", "zebra",
    "armadillo", "buffalo", "cheetah", "dog", "eel",
    "flamingo", "goat", "hedgehog", "impala", "koala",
    "lemur", "moose", "newt", "ostrich", "panda",
)
