"""The C++ runtime contract every lowered unit relies on.

Kept deliberately small: Result variants, ranges and slices with their
bounds policy, checked indexing, printing, assertions, the process-wide test
registry, joinable threads and the type-erased generator used for
coroutines. Lowered code either inlines ``PRELUDE`` or includes
``HEADER_NAME``; the include guard makes both forms safe to combine.
"""

from __future__ import annotations

from pathlib import Path

HEADER_NAME = "csafe_runtime.hpp"
GUARD = "CSAFE_RUNTIME_HPP"
HARNESS_MACRO = "CSAFE_TEST_HARNESS"

PRELUDE = r"""#ifndef CSAFE_RUNTIME_HPP
#define CSAFE_RUNTIME_HPP

#include <cstdint>
#include <cstdlib>
#include <exception>
#include <functional>
#include <future>
#include <iostream>
#include <memory>
#include <sstream>
#include <stdexcept>
#include <string>
#include <thread>
#include <type_traits>
#include <utility>
#include <variant>
#include <vector>

namespace csafe {

// ---- Result -----------------------------------------------------------

template <typename T>
struct Ok {
    T value;
};

template <typename E>
struct Err {
    E value;
};

template <typename T, typename E>
using Result = std::variant<Ok<T>, Err<E>>;

[[noreturn]] inline void unreachable(const char* where) {
    std::cerr << "csafe: unreachable match arm reached at " << where << std::endl;
    std::abort();
}

// ---- ranges and slices ------------------------------------------------

inline std::vector<std::int64_t> range(std::int64_t start, std::int64_t end, std::int64_t step = 1) {
    if (step == 0) {
        throw std::invalid_argument("csafe::range: step cannot be zero");
    }
    if (step < 0 && start <= end) {
        throw std::invalid_argument("csafe::range: a negative step requires start > end");
    }
    std::vector<std::int64_t> out;
    if (step > 0) {
        for (std::int64_t i = start; i < end; i += step) out.push_back(i);
    } else {
        for (std::int64_t i = start; i > end; i += step) out.push_back(i);
    }
    return out;
}

inline void check_slice(std::int64_t start, std::int64_t end, std::size_t size) {
    if (start < 0 || end < start || static_cast<std::size_t>(end) > size) {
        std::ostringstream msg;
        msg << "csafe::slice: [" << start << ":" << end << "] is out of range for size " << size;
        throw std::out_of_range(msg.str());
    }
}

template <typename T>
std::vector<T> slice(const std::vector<T>& seq, std::int64_t start, std::int64_t end) {
    check_slice(start, end, seq.size());
    return std::vector<T>(seq.begin() + start, seq.begin() + end);
}

template <typename T>
std::vector<T> slice(const std::vector<T>& seq, std::int64_t start) {
    return slice(seq, start, static_cast<std::int64_t>(seq.size()));
}

inline std::string slice(const std::string& s, std::int64_t start, std::int64_t end) {
    check_slice(start, end, s.size());
    return s.substr(static_cast<std::size_t>(start), static_cast<std::size_t>(end - start));
}

inline std::string slice(const std::string& s, std::int64_t start) {
    return slice(s, start, static_cast<std::int64_t>(s.size()));
}

// ---- sequences --------------------------------------------------------

inline void check_index(std::int64_t i, std::size_t size) {
    if (i < 0 || static_cast<std::size_t>(i) >= size) {
        std::ostringstream msg;
        msg << "csafe: index " << i << " is out of range for size " << size;
        throw std::out_of_range(msg.str());
    }
}

template <typename T>
T& at(std::vector<T>& seq, std::int64_t i) {
    check_index(i, seq.size());
    return seq[static_cast<std::size_t>(i)];
}

template <typename T>
const T& at(const std::vector<T>& seq, std::int64_t i) {
    check_index(i, seq.size());
    return seq[static_cast<std::size_t>(i)];
}

inline std::string at(const std::string& s, std::int64_t i) {
    check_index(i, s.size());
    return std::string(1, s[static_cast<std::size_t>(i)]);
}

template <typename T, typename... Args>
std::vector<T> seq_of(Args&&... args) {
    std::vector<T> out;
    out.reserve(sizeof...(Args));
    (out.emplace_back(std::forward<Args>(args)), ...);
    return out;
}

inline std::vector<std::string> chars(const std::string& s) {
    std::vector<std::string> out;
    for (char c : s) out.emplace_back(1, c);
    return out;
}

template <typename T>
std::int64_t len(const std::vector<T>& seq) {
    return static_cast<std::int64_t>(seq.size());
}

inline std::int64_t len(const std::string& s) {
    return static_cast<std::int64_t>(s.size());
}

// ---- printing and assertions ------------------------------------------

template <typename T>
void print_one(std::ostream& out, const T& value) {
    if constexpr (std::is_same<T, bool>::value) {
        out << (value ? "true" : "false");
    } else {
        out << value;
    }
}

template <typename... Args>
void print(const Args&... args) {
    std::ostringstream out;
    bool first = true;
    ((out << (first ? "" : " "), print_one(out, args), first = false), ...);
    std::cout << out.str() << std::endl;
}

struct AssertionFailure : std::runtime_error {
    using std::runtime_error::runtime_error;
};

inline void check(bool condition, const char* message, const char* where) {
    if (!condition) {
        std::string text = std::string(where) + ": assertion failed";
        if (message != nullptr) text += std::string(": ") + message;
        throw AssertionFailure(text);
    }
}

// ---- inline tests -----------------------------------------------------

struct TestCase;

inline std::vector<const TestCase*>& test_registry() {
    static std::vector<const TestCase*> registry;
    return registry;
}

struct TestCase {
    std::string name;
    std::function<void()> body;

    TestCase(std::string test_name, std::function<void()> test_body)
        : name(std::move(test_name)), body(std::move(test_body)) {
        test_registry().push_back(this);
    }
};

inline int run_tests() {
    int failed = 0;
    for (const TestCase* test : test_registry()) {
        try {
            test->body();
            std::cout << "PASS " << test->name << std::endl;
        } catch (const std::exception& e) {
            ++failed;
            std::cout << "FAIL " << test->name << ": " << e.what() << std::endl;
        }
    }
    std::cout << (test_registry().size() - failed) << " passed, " << failed << " failed" << std::endl;
    return failed == 0 ? 0 : 1;
}

// ---- threads ----------------------------------------------------------

class Thread {
public:
    Thread() = default;
    explicit Thread(std::thread t) : thread_(std::move(t)) {}
    Thread(Thread&&) = default;
    Thread& operator=(Thread&& other) {
        detach();
        thread_ = std::move(other.thread_);
        return *this;
    }
    ~Thread() { detach(); }

    void join() {
        if (thread_.joinable()) thread_.join();
    }
    void detach() {
        if (thread_.joinable()) thread_.detach();
    }

private:
    std::thread thread_;
};

template <typename F>
Thread spawn(F&& body) {
    return Thread(std::thread(std::forward<F>(body)));
}

// ---- coroutines -------------------------------------------------------

template <typename T>
class Generator {
public:
    Generator() = default;

    template <typename State,
              typename = std::enable_if_t<!std::is_same<std::decay_t<State>, Generator>::value>>
    explicit Generator(State state) {
        auto frame = std::make_shared<State>(std::move(state));
        next_ = [frame](T& out) { return frame->next(out); };
    }

    bool next(T& out) { return next_ && next_(out); }

    class iterator {
    public:
        explicit iterator(Generator* gen) : gen_(gen) {}
        T& operator*() { return current_; }
        iterator& operator++() {
            if (!gen_->next(current_)) gen_ = nullptr;
            return *this;
        }
        bool operator!=(const iterator& other) const { return gen_ != other.gen_; }

    private:
        Generator* gen_;
        T current_{};
    };

    iterator begin() {
        iterator it(this);
        ++it;
        return it;
    }
    iterator end() { return iterator(nullptr); }

private:
    std::function<bool(T&)> next_;
};

}  // namespace csafe

#endif  // CSAFE_RUNTIME_HPP
"""


def harness_main() -> str:
    return (
        f"#ifdef {HARNESS_MACRO}\n"
        "int main() { return csafe::run_tests(); }\n"
        "#endif\n"
    )


def write_header(directory: str | Path) -> Path:
    """Write the runtime header next to generated sources that include it."""
    path = Path(directory) / HEADER_NAME
    path.write_text(PRELUDE, encoding="utf-8")
    return path
