"""Fact banks for the non-math subjects."""
from typing import Dict, List


def _entry(question: str, answer: str, wrong: List[str], category: str,
           difficulty: str, explanation: str = None) -> Dict:
    return {
        "question": question,
        "answer": answer,
        "wrong": wrong,
        "category": category,
        "difficulty": difficulty,
        "explanation": explanation,
    }


BANK_CATEGORIES: Dict[str, List[Dict[str, str]]] = {
    "science": [
        {"id": "biology", "name": "Biology"},
        {"id": "chemistry", "name": "Chemistry"},
        {"id": "physics", "name": "Physics"},
        {"id": "astronomy", "name": "Astronomy"},
        {"id": "earth-science", "name": "Earth Science"},
    ],
    "geography": [
        {"id": "world-capitals", "name": "World Capitals"},
        {"id": "continents", "name": "Continents"},
        {"id": "us-states", "name": "US States"},
        {"id": "landmarks", "name": "Famous Landmarks"},
        {"id": "oceans-rivers", "name": "Oceans and Rivers"},
    ],
    "history": [
        {"id": "ancient", "name": "Ancient Civilizations"},
        {"id": "medieval", "name": "Medieval Times"},
        {"id": "american", "name": "American History"},
        {"id": "world", "name": "World Events"},
        {"id": "famous-people", "name": "Famous People"},
        {"id": "inventions", "name": "Inventions"},
    ],
    "spelling": [
        {"id": "correct-spelling", "name": "Correct Spelling"},
        {"id": "missing-letter", "name": "Missing Letter"},
        {"id": "definitions", "name": "Definitions"},
        {"id": "synonyms", "name": "Synonyms"},
        {"id": "antonyms", "name": "Antonyms"},
    ],
}


SCIENCE_BANK = [
    _entry("What do plants need to make food?", "Sunlight", ["Darkness", "Music", "Wind"],
           "biology", "beginner", "Plants use sunlight for photosynthesis"),
    _entry("How many legs does a spider have?", "8", ["6", "10", "4"], "biology", "beginner"),
    _entry("What is the powerhouse of the cell?", "Mitochondria",
           ["Nucleus", "Ribosome", "Cytoplasm"], "biology", "intermediate"),
    _entry("What molecule carries genetic information?", "DNA",
           ["RNA", "Protein", "Lipid"], "biology", "advanced"),
    _entry("What is H2O commonly known as?", "Water",
           ["Oxygen", "Hydrogen", "Carbon dioxide"], "chemistry", "beginner"),
    _entry("What is the chemical symbol for gold?", "Au", ["Go", "Gd", "Ag"],
           "chemistry", "intermediate"),
    _entry("What force pulls objects toward the Earth?", "Gravity",
           ["Magnetism", "Friction", "Inertia"], "physics", "beginner"),
    _entry("What is the unit of electrical resistance?", "Ohm",
           ["Volt", "Ampere", "Watt"], "physics", "advanced"),
    _entry("What is the closest star to Earth?", "The Sun",
           ["Sirius", "Polaris", "Alpha Centauri"], "astronomy", "beginner"),
    _entry("Which planet is known as the Red Planet?", "Mars",
           ["Venus", "Jupiter", "Mercury"], "astronomy", "intermediate"),
    _entry("What type of rock forms from cooled lava?", "Igneous",
           ["Sedimentary", "Metamorphic", "Limestone"], "earth-science", "intermediate"),
    _entry("What layer of the Earth lies beneath the crust?", "Mantle",
           ["Core", "Atmosphere", "Lithosphere"], "earth-science", "expert"),
]

GEOGRAPHY_BANK = [
    _entry("What is the capital of France?", "Paris", ["London", "Berlin", "Madrid"],
           "world-capitals", "beginner"),
    _entry("What is the capital of Japan?", "Tokyo", ["Kyoto", "Osaka", "Seoul"],
           "world-capitals", "beginner"),
    _entry("What is the capital of Australia?", "Canberra",
           ["Sydney", "Melbourne", "Perth"], "world-capitals", "intermediate"),
    _entry("Which is the largest continent?", "Asia", ["Africa", "Europe", "North America"],
           "continents", "beginner"),
    _entry("On which continent is Egypt?", "Africa", ["Asia", "Europe", "South America"],
           "continents", "intermediate"),
    _entry("What is the largest US state by area?", "Alaska", ["Texas", "California", "Montana"],
           "us-states", "beginner"),
    _entry("What is the capital of New York State?", "Albany",
           ["New York City", "Buffalo", "Rochester"], "us-states", "advanced"),
    _entry("In which city is the Eiffel Tower?", "Paris", ["Rome", "London", "Vienna"],
           "landmarks", "beginner"),
    _entry("In which country is Machu Picchu?", "Peru", ["Chile", "Mexico", "Bolivia"],
           "landmarks", "intermediate"),
    _entry("Which is the largest ocean?", "Pacific Ocean",
           ["Atlantic Ocean", "Indian Ocean", "Arctic Ocean"], "oceans-rivers", "beginner"),
    _entry("Which river flows through London?", "Thames", ["Seine", "Rhine", "Danube"],
           "oceans-rivers", "intermediate"),
    _entry("Which is the largest lake in Africa?", "Lake Victoria",
           ["Lake Tanganyika", "Lake Malawi", "Lake Chad"], "oceans-rivers", "advanced"),
]

HISTORY_BANK = [
    _entry("What ancient wonder was built in Egypt?", "The Pyramids",
           ["The Colosseum", "The Great Wall", "The Parthenon"], "ancient", "beginner",
           "The Great Pyramids of Giza were built as tombs for Egyptian pharaohs"),
    _entry("What Greek philosopher taught Alexander the Great?", "Aristotle",
           ["Plato", "Socrates", "Homer"], "ancient", "intermediate"),
    _entry("What year did Rome fall?", "476 AD", ["300 AD", "100 AD", "600 AD"],
           "ancient", "advanced"),
    _entry("What were medieval soldiers in armor called?", "Knights",
           ["Soldiers", "Guards", "Warriors"], "medieval", "beginner"),
    _entry("What document limited the king's power in England in 1215?", "Magna Carta",
           ["Constitution", "Declaration", "Charter of Rights"], "medieval", "intermediate"),
    _entry("Who was the first President of the United States?", "George Washington",
           ["Thomas Jefferson", "Abraham Lincoln", "John Adams"], "american", "beginner"),
    _entry("In what year was the Declaration of Independence signed?", "1776",
           ["1789", "1812", "1765"], "american", "intermediate"),
    _entry("In what year did World War II end?", "1945", ["1918", "1939", "1950"],
           "world", "intermediate"),
    _entry("What wall fell in 1989?", "Berlin Wall",
           ["Great Wall", "Hadrian's Wall", "Western Wall"], "world", "advanced"),
    _entry("Who painted the Mona Lisa?", "Leonardo da Vinci",
           ["Michelangelo", "Raphael", "Botticelli"], "famous-people", "beginner"),
    _entry("Who invented the printing press?", "Johannes Gutenberg",
           ["Leonardo da Vinci", "Galileo Galilei", "Isaac Newton"], "inventions", "intermediate"),
    _entry("Who invented the telephone?", "Alexander Graham Bell",
           ["Thomas Edison", "Nikola Tesla", "Samuel Morse"], "inventions", "beginner"),
]

SPELLING_BANK = [
    _entry("Which word is spelled correctly?", "Because", ["Becuase", "Becaus", "Beacuse"],
           "correct-spelling", "beginner"),
    _entry("Which word is spelled correctly?", "Necessary",
           ["Neccessary", "Necesary", "Neccesary"], "correct-spelling", "advanced"),
    _entry("Which word is spelled correctly?", "Friend", ["Freind", "Frend", "Friand"],
           "correct-spelling", "intermediate"),
    _entry("Fill in the missing letter: ELEPH_NT", "A", ["E", "I", "O"],
           "missing-letter", "beginner"),
    _entry("Fill in the missing letter: REC_IVE", "E", ["I", "A", "Y"],
           "missing-letter", "intermediate"),
    _entry("Which word means 'very happy'?", "Joyful", ["Gloomy", "Tired", "Angry"],
           "definitions", "beginner"),
    _entry("Which word means 'to make something better'?", "Improve",
           ["Reduce", "Ignore", "Remove"], "definitions", "intermediate"),
    _entry("What is a synonym for 'big'?", "Large", ["Tiny", "Thin", "Short"],
           "synonyms", "beginner"),
    _entry("What is a synonym for 'brave'?", "Courageous", ["Fearful", "Timid", "Lazy"],
           "synonyms", "intermediate"),
    _entry("What is an antonym for 'hot'?", "Cold", ["Warm", "Boiling", "Sunny"],
           "antonyms", "beginner"),
    _entry("What is an antonym for 'generous'?", "Stingy", ["Kind", "Giving", "Charitable"],
           "antonyms", "advanced"),
]

QUESTION_BANKS: Dict[str, List[Dict]] = {
    "spelling": SPELLING_BANK,
    "geography": GEOGRAPHY_BANK,
    "science": SCIENCE_BANK,
    "history": HISTORY_BANK,
}
