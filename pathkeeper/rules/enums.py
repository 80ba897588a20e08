"""Enumerations and limits shared by the Pathfinder 2e rules engine."""

from enum import Enum, IntEnum


class ModifierTarget(IntEnum):
    """Character statistic a modifier applies to."""

    # Ability scores
    STRENGTH = 1
    DEXTERITY = 2
    CONSTITUTION = 3
    INTELLIGENCE = 4
    WISDOM = 5
    CHARISMA = 6

    # Derived statistics
    ARMOR_CLASS = 10
    HIT_POINTS = 11
    INITIATIVE = 12
    SPEED = 13

    # Saving throws
    FORTITUDE_SAVE = 20
    REFLEX_SAVE = 21
    WILL_SAVE = 22

    # Skills
    ACROBATICS = 30
    ARCANA = 31
    ATHLETICS = 32
    CRAFTING = 33
    DECEPTION = 34
    DIPLOMACY = 35
    INTIMIDATION = 36
    LORE = 37
    MEDICINE = 38
    NATURE = 39
    OCCULTISM = 40
    PERCEPTION = 41
    PERFORMANCE = 42
    RELIGION = 43
    SOCIETY = 44
    STEALTH = 45
    SURVIVAL = 46
    THIEVERY = 47

    # Attacks
    ATTACK_BONUS = 50
    DAMAGE_BONUS = 51
    SPELL_ATTACK_BONUS = 52
    SPELL_DC = 53

    # Resistances
    ALL_DAMAGE_RESISTANCE = 60
    PHYSICAL_RESISTANCE = 61
    FIRE_RESISTANCE = 62
    COLD_RESISTANCE = 63
    ELECTRICITY_RESISTANCE = 64
    ACID_RESISTANCE = 65
    SONIC_RESISTANCE = 66

    # Movement and carrying
    CARRYING_CAPACITY = 70
    LAND_SPEED = 71
    SWIM_SPEED = 72
    CLIMB_SPEED = 73
    FLY_SPEED = 74

    @property
    def label(self) -> str:
        """Human readable name, e.g. ``Armor Class``."""
        return self.name.replace("_", " ").title()


class ModifierType(IntEnum):
    """Bonus category; typed bonuses of the same category do not stack."""

    UNTYPED = 1
    ITEM = 2
    ENHANCEMENT = 3
    STATUS = 4
    CIRCUMSTANCE = 5
    COMPETENCE = 6
    DEFLECTION = 7
    DODGE = 8
    INSIGHT = 9
    LUCK = 10
    MORALE = 11
    NATURAL = 12
    PROFANE = 13
    RACIAL = 14
    RESISTANCE = 15
    SACRED = 16
    SIZE = 17
    ALCHEMICAL = 18

    @property
    def label(self) -> str:
        return self.name.title()


class CustomDefinitionType(IntEnum):
    """Kind of homebrew content a user can define."""

    CLASS = 1
    ARCHETYPE = 2
    FEAT = 3
    SPELL = 4
    ITEM = 5
    WEAPON = 6
    ARMOR = 7
    OPERATION = 8
    BACKGROUND = 9
    ANCESTRY = 10
    HERITAGE = 11
    TRAIT = 12


class ProficiencyRank(IntEnum):
    """Proficiency ranks; the value is the flat bonus added to level."""

    UNTRAINED = 0
    TRAINED = 2
    EXPERT = 4
    MASTER = 6
    LEGENDARY = 8


class VariantRuleType(IntEnum):
    """Optional Gamemastery Guide variant rules."""

    ANCESTRY_PARAGON = 1
    AUTOMATIC_BONUS_PROGRESSION = 2
    DUAL_CLASS = 3
    FREE_ARCHETYPE = 4
    GRADUAL_ABILITY_BOOSTS = 5
    PROFICIENCY_WITHOUT_LEVEL = 6
    VOLUNTARY_FLAWS = 7
    IGNORE_BULK_LIMIT = 8


class IssueSeverity(Enum):
    """Severity of a character validation issue."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


ABILITY_TARGETS = (
    ModifierTarget.STRENGTH,
    ModifierTarget.DEXTERITY,
    ModifierTarget.CONSTITUTION,
    ModifierTarget.INTELLIGENCE,
    ModifierTarget.WISDOM,
    ModifierTarget.CHARISMA,
)

# Ability score keys as stored on characters
ABILITY_KEYS = {
    "strength": ModifierTarget.STRENGTH,
    "dexterity": ModifierTarget.DEXTERITY,
    "constitution": ModifierTarget.CONSTITUTION,
    "intelligence": ModifierTarget.INTELLIGENCE,
    "wisdom": ModifierTarget.WISDOM,
    "charisma": ModifierTarget.CHARISMA,
}

# Key ability of every skill, perception and save
KEY_ABILITY = {
    ModifierTarget.FORTITUDE_SAVE: ModifierTarget.CONSTITUTION,
    ModifierTarget.REFLEX_SAVE: ModifierTarget.DEXTERITY,
    ModifierTarget.WILL_SAVE: ModifierTarget.WISDOM,
    ModifierTarget.ACROBATICS: ModifierTarget.DEXTERITY,
    ModifierTarget.ARCANA: ModifierTarget.INTELLIGENCE,
    ModifierTarget.ATHLETICS: ModifierTarget.STRENGTH,
    ModifierTarget.CRAFTING: ModifierTarget.INTELLIGENCE,
    ModifierTarget.DECEPTION: ModifierTarget.CHARISMA,
    ModifierTarget.DIPLOMACY: ModifierTarget.CHARISMA,
    ModifierTarget.INTIMIDATION: ModifierTarget.CHARISMA,
    ModifierTarget.LORE: ModifierTarget.INTELLIGENCE,
    ModifierTarget.MEDICINE: ModifierTarget.WISDOM,
    ModifierTarget.NATURE: ModifierTarget.WISDOM,
    ModifierTarget.OCCULTISM: ModifierTarget.INTELLIGENCE,
    ModifierTarget.PERCEPTION: ModifierTarget.WISDOM,
    ModifierTarget.PERFORMANCE: ModifierTarget.CHARISMA,
    ModifierTarget.RELIGION: ModifierTarget.WISDOM,
    ModifierTarget.SOCIETY: ModifierTarget.INTELLIGENCE,
    ModifierTarget.STEALTH: ModifierTarget.DEXTERITY,
    ModifierTarget.SURVIVAL: ModifierTarget.WISDOM,
    ModifierTarget.THIEVERY: ModifierTarget.DEXTERITY,
}

# Stats whose final value shifts when an ability score is modified.
# Lore is keyed to Intelligence for base values but is not recalculated.
ABILITY_DEPENDENTS = {
    ModifierTarget.DEXTERITY: (
        ModifierTarget.INITIATIVE,
        ModifierTarget.REFLEX_SAVE,
        ModifierTarget.ACROBATICS,
        ModifierTarget.STEALTH,
        ModifierTarget.THIEVERY,
    ),
    ModifierTarget.CONSTITUTION: (ModifierTarget.FORTITUDE_SAVE,),
    ModifierTarget.STRENGTH: (ModifierTarget.ATHLETICS,),
    ModifierTarget.INTELLIGENCE: (
        ModifierTarget.ARCANA,
        ModifierTarget.CRAFTING,
        ModifierTarget.OCCULTISM,
        ModifierTarget.SOCIETY,
    ),
    ModifierTarget.WISDOM: (
        ModifierTarget.WILL_SAVE,
        ModifierTarget.MEDICINE,
        ModifierTarget.NATURE,
        ModifierTarget.PERCEPTION,
        ModifierTarget.RELIGION,
        ModifierTarget.SURVIVAL,
    ),
    ModifierTarget.CHARISMA: (
        ModifierTarget.DECEPTION,
        ModifierTarget.DIPLOMACY,
        ModifierTarget.INTIMIDATION,
        ModifierTarget.PERFORMANCE,
    ),
}

# Content limits
MAX_NAME_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 2000
MAX_JSON_SIZE = 50000
MAX_TRAITS = 20
MAX_TAGS = 10
MAX_MODIFIERS_PER_ITEM = 10
MIN_LEVEL = 0
MAX_LEVEL = 20
MIN_MODIFIER_VALUE = -20
MAX_MODIFIER_VALUE = 50
