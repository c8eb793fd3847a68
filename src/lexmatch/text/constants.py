"""Fixed word lists used when filtering candidate spans and normalizing."""

# Spans equal to one of these (lowercased) are never queried.
STOP_TERMS: frozenset[str] = frozenset({
    "this", "that", "these", "those",
    "plus", "minus",
    "one", "two", "three",
    "and", "or", "but", "as",
    "at", "by", "from", "to", "in", "of", "with", "for",
    "an", "the", "not", "no",
    "can", "has", "have", "had", "am", "are", "is", "was", "were", "do", "does", "did",
    "we",
    "blocked", "regulated", "transformed",
    "clear", "early", "essential", "functional", "high", "multiple", "little", "partial", "unclear",
    "cytosolic", "secreting", "function", "per", "se", "set", "line", "lines", "run",
    "activator", "binding", "bp", "cell", "dna", "factor", "factors", "mitochondria",
    "mitochondrial", "mrna", "rna",
    "metabolite", "reduced", "regulation", "regulatory", "replication",
    "enzyme", "fragment", "fragments", "membrane", "type", "dna binding", "fold", "receptor",
})

# Spans opening with an article are never queried.
ARTICLE_PREFIXES: tuple[str, ...] = ("the ", "a ", "an ")

# Spans starting or ending with one of these characters are never queried.
BOUNDARY_PUNCTUATION: tuple[str, ...] = ("-", "(", ")", ",", ".")

# Words dropped from the morphosyntactic (norm2) form by the local normalizer.
NORMALIZER_STOPWORDS: frozenset[str] = frozenset({
    "and", "are", "as", "at", "be", "but", "by", "for", "if", "in", "into",
    "is", "it", "no", "not", "of", "on", "or", "such", "that", "the", "their",
    "then", "there", "these", "they", "this", "to", "was", "will", "with",
})

# Words a span may not contain, unless a vocabulary label does.
NO_TERM_WORDS: frozenset[str] = frozenset({
    "are", "am", "be", "was", "were", "do", "did", "does", "had", "has", "have",
    "what", "which", "when", "where", "who", "how", "if", "whether",
    "an", "the", "this", "that", "these", "those", "is", "it", "its",
    "we", "our", "us", "they", "their", "them", "there", "then",
    "i", "he", "she", "my", "me", "his", "him", "her",
    "will", "shall", "may", "can", "cannot", "would", "should", "might", "could", "ought",
    "each", "every", "many", "much", "very", "more", "most", "than", "such", "several", "some",
    "both", "even", "and", "or", "but", "neither", "nor", "not", "never", "also", "as", "well",
})

# Mostly prepositions; a span may not start or end with one unless a label does.
NO_BEGIN_WORDS: frozenset[str] = frozenset({
    "a", "am", "an", "and", "are", "as", "about", "above", "across", "after", "against",
    "along", "amid", "among", "around", "at", "been", "before", "behind", "below", "beneath",
    "beside", "besides", "between", "beyond", "by", "concerning", "considering", "despite",
    "do", "except", "excepting", "excluding", "for", "from", "had", "has", "have", "i", "in",
    "inside", "into", "if", "is", "it", "like", "my", "me", "of", "off", "on", "onto",
    "regarding", "since", "through", "to", "toward", "towards", "under", "underneath",
    "unlike", "until", "upon", "versus", "via", "with", "within", "without", "during",
    "what", "which", "when", "where", "who", "how", "whether",
})

NO_END_WORDS: frozenset[str] = NO_BEGIN_WORDS
